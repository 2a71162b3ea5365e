#!/usr/bin/env python3
"""
Startup script for the SIAP-SPJ Web Application
"""

import argparse
import os
import sys

from dotenv import load_dotenv


def init_database():
    """Create the schema at the configured path and exit."""
    from config import get_config
    from spj_web_app import build_service

    config = get_config()
    config.validate()
    service = build_service(config)
    print(f"✅ Database ready at {config.DATABASE_PATH} ({service.store.count_rows('spj')} SPJ)")
    service.store.close()


def run_production_server(host: str, port: int, workers: int):
    """Run the application with Gunicorn for production."""
    import gunicorn.app.wsgiapp as wsgi

    print("🚀 Starting production server with Gunicorn...")

    sys.argv = [
        'gunicorn',
        '--bind', f'{host}:{port}',
        '--workers', str(workers),
        '--worker-class', 'sync',
        '--max-requests', '1000',
        '--max-requests-jitter', '100',
        '--timeout', '120',
        '--keep-alive', '2',
        '--access-logfile', '-',
        '--error-logfile', '-',
        '--log-level', 'info',
        'spj_web_app:create_app()'
    ]

    wsgi.run()


def run_development_server(host: str, port: int):
    """Run the Flask development server."""
    from spj_web_app import create_app

    app = create_app()

    print("🌐 Starting development server...")
    print(f"   API available at: http://{host}:{port}/api/health")
    print("   Press Ctrl+C to stop the server")

    app.run(debug=True, host=host, port=port)


def main(argv=None):
    parser = argparse.ArgumentParser(description='SIAP-SPJ web application')
    parser.add_argument('--production', action='store_true',
                        help='Run under gunicorn with the production configuration')
    parser.add_argument('--init-db', action='store_true',
                        help='Create the database schema and exit')
    parser.add_argument('--host', default=os.getenv('HOST', '0.0.0.0'))
    parser.add_argument('--port', type=int, default=int(os.getenv('PORT', '5000')))
    parser.add_argument('--workers', type=int, default=int(os.getenv('WEB_CONCURRENCY', '4')))
    args = parser.parse_args(argv)

    if os.path.exists('.env'):
        load_dotenv()
        print("✅ Loaded .env file")

    if args.production:
        os.environ['FLASK_ENV'] = 'production'

    print("🚀 SIAP-SPJ Web Application")
    print("=" * 50)

    try:
        if args.init_db:
            init_database()
        elif args.production:
            run_production_server(args.host, args.port, args.workers)
        else:
            run_development_server(args.host, args.port)
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\n👋 Server stopped. Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
