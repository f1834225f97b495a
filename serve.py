import os

from dotenv import load_dotenv

from filegate import create_app


def main():
    load_dotenv()
    app = create_app()
    host = os.environ.get('FLASK_RUN_HOST', '127.0.0.1')
    port = int(os.environ.get('FLASK_RUN_PORT', '3001'))
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == '__main__':
    main()
