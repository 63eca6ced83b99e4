import sys
import argparse
import time

import uvicorn
from fastapi import Request
from prometheus_client import Counter, Histogram
from alembic import command
from alembic.config import Config
import os
import logging
from prometheus_fastapi_instrumentator import Instrumentator
from .app import create_app
from .app.auth import create_access_token
from .app.hold_expiry import release_expired_holds
from .app.models import Base, User
from .app.dependencies import DATABASE_URL, PAYMENT_HOLD_MINUTES, SessionLocal, UserRole, engine, get_redis_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

app = create_app()

# Custom Prometheus metrics for specific routes
ROUTE_REQUEST_COUNT = Counter("route_request_count", "Total number of requests per route", ["method", "endpoint"])
ROUTE_REQUEST_LATENCY = Histogram("route_request_latency_seconds", "Request latency in seconds per route", ["method", "endpoint"])


# Instrument the app with Prometheus metrics
Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

# Middleware to track custom metrics
@app.middleware("http")
async def add_metrics(request: Request, call_next):
    start_time = time.time()

    # Process the request
    response = await call_next(request)

    # Label by route template so per-doctor paths share a series
    route = request.scope.get("route")
    endpoint = route.path if route is not None else request.url.path
    ROUTE_REQUEST_COUNT.labels(method=request.method, endpoint=endpoint).inc()
    ROUTE_REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(time.time() - start_time)

    return response


def start_server():
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", 8000)))


def create_tables():
    print(f"Using database URL: {DATABASE_URL}")
    Base.metadata.create_all(engine)
    print("Database tables created successfully.")


def run_migrations(action, revision=None, message=None):
    # Inline Alembic configuration
    alembic_cfg = Config()
    alembic_cfg.set_main_option('sqlalchemy.url', DATABASE_URL)
    alembic_cfg.set_main_option('script_location', os.path.join(os.path.dirname(__file__), 'migrations'))

    if action == "upgrade":
        command.upgrade(alembic_cfg, "head")
    elif action == "downgrade":
        if not revision:
            print("Please specify a revision to downgrade to.")
            return
        command.downgrade(alembic_cfg, revision)
    elif action == "revision":
        if not message:
            print("Please provide a message for the migration.")
            return
        command.revision(alembic_cfg, autogenerate=True, message=message)
    elif action == "current":
        command.current(alembic_cfg)
    else:
        print("Invalid action specified for migrations.")


def clear_redis_cache():
    redis_client = get_redis_client()
    keys = list(redis_client.scan_iter(match="doctor:*:slots:*"))
    if keys:
        redis_client.delete(*keys)
    print(f"Cleared {len(keys)} cached slot lists.")


def expire_holds():
    db = SessionLocal()
    try:
        released = release_expired_holds(db, get_redis_client(), PAYMENT_HOLD_MINUTES)
    finally:
        db.close()
    if released is None:
        print("Another process is releasing holds, skipped.")
    else:
        print(f"Released {released} expired payment holds.")


def create_user(name, email, role):
    db = SessionLocal()
    try:
        user = User(name=name, email=email.strip().lower(), role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        print(f"Created {role} {user.email} with id {user.id}")
        print(f"Access token: {create_access_token(user)}")
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Consultation Booking Service")
    parser.add_argument(
        '--mode',
        type=str,
        choices=['server', 'create-tables', 'migrate', 'clear-cache', 'expire-holds', 'create-user'],
        required=True,
        help="Mode to run the application in. Choices are 'server' to start the FastAPI server, 'create-tables' to create the database tables, 'migrate' to manage database migrations, 'clear-cache' to drop every cached slot list, 'expire-holds' to release unpaid bookings past the payment window, or 'create-user' to provision a user and print a token."
    )

    parser.add_argument(
        '--action',
        type=str,
        choices=['upgrade', 'downgrade', 'revision', 'current'],
        help="Action to perform with Alembic migrations. Required if mode is 'migrate'."
    )

    parser.add_argument(
        '--revision',
        type=str,
        help="Specify the revision for downgrade or other Alembic commands where needed."
    )

    parser.add_argument(
        '--message',
        type=str,
        help="Message to use with the 'revision' action in Alembic."
    )

    parser.add_argument('--name', type=str, help="User name for 'create-user'.")
    parser.add_argument('--email', type=str, help="User email for 'create-user'.")
    parser.add_argument(
        '--role',
        type=str,
        choices=[r.value for r in UserRole],
        help="User role for 'create-user'."
    )

    args = parser.parse_args()

    if args.mode == 'server':
        start_server()
    elif args.mode == 'create-tables':
        create_tables()
    elif args.mode == 'migrate':
        if not args.action:
            print("Please specify an action for the 'migrate' mode.")
        else:
            run_migrations(args.action, args.revision, args.message)
    elif args.mode == 'clear-cache':
        clear_redis_cache()
    elif args.mode == 'expire-holds':
        expire_holds()
    elif args.mode == 'create-user':
        if not (args.name and args.email and args.role):
            print("Please specify --name, --email and --role for the 'create-user' mode.")
        else:
            create_user(args.name, args.email, args.role)


if __name__ == "__main__":
    main()
