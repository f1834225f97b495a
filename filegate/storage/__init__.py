from .s3 import ObjectStore, safe_filename, storage_key

__all__ = ['ObjectStore', 'safe_filename', 'storage_key']
