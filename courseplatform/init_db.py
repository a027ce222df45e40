"""Create or update the course platform schema for DATABASE_URL.

Usage:
    python -m courseplatform.init_db
"""
import sys

from courseplatform.client.client import CoursePlatformClient
from courseplatform.core import config
from courseplatform.core.errors import ClientError


def main() -> None:
    try:
        config.validate_runtime_config()
    except RuntimeError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        client = CoursePlatformClient(config.DATABASE_URL, log=[])
    except ClientError as exc:
        print("Invalid datasource:", exc.message, file=sys.stderr)
        sys.exit(1)

    try:
        issued = client.ensure_schema()
    except ClientError as exc:
        print("Schema setup failed:", exc.message, file=sys.stderr)
        sys.exit(1)
    finally:
        client.disconnect()

    if issued:
        for statement in issued:
            print(statement)
    else:
        print("Schema is up to date.")


if __name__ == "__main__":
    main()
