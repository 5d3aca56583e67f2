"""Start a sample database container, write its XML connection config and seed it through xmlconnect."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from xmlconnect.config import CONFIG_FILE, AppConfig
from xmlconnect.connections import CONNECTION_ERROR_TITLE, build_dsn, connect_to_database, save_connection_config
from xmlconnect.models import ConnectionConfig
from xmlconnect.reporting import ErrorReporter, ReportedFailure
from xmlconnect.validation import validate_xml

DEFAULT_OUTPUT = CONFIG_FILE.parent / "database.xml"

# image, container port, environment and seed statements per dbtype
ENGINES = {
    "pgsql": {
        "image": "postgres:16-alpine",
        "port": 5432,
        "env": {"POSTGRES_PASSWORD": "{password}", "POSTGRES_DB": "{database}", "POSTGRES_USER": "{user}"},
        "seed": [
            """CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                display_name TEXT NOT NULL
            )""",
            """INSERT INTO users (email, display_name) VALUES
                ('anna@example.com', 'Anna'), ('ben@example.com', 'Ben')
            ON CONFLICT (email) DO NOTHING""",
        ],
    },
    "mysql": {
        "image": "mysql:8.4",
        "port": 3306,
        "env": {
            "MYSQL_ROOT_PASSWORD": "{password}",
            "MYSQL_DATABASE": "{database}",
            "MYSQL_USER": "{user}",
            "MYSQL_PASSWORD": "{password}",
        },
        "seed": [
            """CREATE TABLE IF NOT EXISTS users (
                id INT AUTO_INCREMENT PRIMARY KEY,
                email VARCHAR(255) NOT NULL UNIQUE,
                display_name VARCHAR(255) NOT NULL
            ) DEFAULT CHARSET = utf8mb4""",
            """INSERT IGNORE INTO users (email, display_name) VALUES
                ('anna@example.com', 'Anna'), ('ben@example.com', 'Ben')""",
        ],
    },
}


def start_container(args: argparse.Namespace) -> None:
    engine = ENGINES[args.dbtype]
    found = subprocess.run(
        ["docker", "ps", "-aq", "--filter", f"name=^{args.container}$"],
        text=True,
        capture_output=True,
    )
    if found.stdout.strip():
        print(f"Container '{args.container}' already exists. Reusing it.")
        subprocess.run(["docker", "start", args.container], check=False)
        return
    values = {"password": args.password, "database": args.database, "user": args.user}
    cmd = ["docker", "run", "-d", "--name", args.container, "-p", f"{args.port}:{engine['port']}"]
    for key, template in engine["env"].items():
        cmd += ["-e", f"{key}={template.format(**values)}"]
    cmd.append(engine["image"])
    print("$", " ".join(cmd))
    subprocess.run(cmd, check=True)


def write_config(args: argparse.Namespace, reporter: ErrorReporter) -> None:
    if args.output.exists():
        print(f"Connection config {args.output} already present; leaving as-is.")
    else:
        config = ConnectionConfig(
            dbtype=args.dbtype,
            dbname=args.database,
            host="localhost",
            port=str(args.port),
            user=args.user,
            password=args.password,
        )
        save_connection_config(config, args.output)
        print(f"Wrote connection config for {build_dsn(config)} to {args.output}.")
    validate_xml(args.output, AppConfig().resolved_schema_path(), CONNECTION_ERROR_TITLE, reporter=reporter)


def connect_when_ready(path: Path, reporter: ErrorReporter, retries: int, delay: float):
    config = AppConfig(connect_timeout=delay)
    for attempt in range(1, retries + 1):
        try:
            return connect_to_database(path, config=config, reporter=reporter)
        except ReportedFailure:
            if attempt == retries:
                raise
            print(f"Database not ready yet (attempt {attempt}/{retries}); retrying.")
            time.sleep(delay)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dbtype", choices=sorted(ENGINES), default="pgsql", help="Database engine to start")
    parser.add_argument("--container", default="xmlconnect-sample-db", help="Docker container name")
    parser.add_argument("--port", type=int, default=5543, help="Host port to expose the database on")
    parser.add_argument("--password", default="xmlconnect", help="Database password")
    parser.add_argument("--database", default="xmlconnect_demo", help="Database name to create")
    parser.add_argument("--user", default="xmlconnect", help="Database user")
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT, help="Where to write the XML connection config")
    parser.add_argument("--retries", type=int, default=30, help="Connection attempts while the container starts")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    reporter = ErrorReporter()
    try:
        start_container(args)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    try:
        write_config(args, reporter)
        with connect_when_ready(args.output, reporter, args.retries, delay=2.0) as handle:
            for statement in ENGINES[args.dbtype]["seed"]:
                handle.execute(statement)
            count = handle.fetch_one("SELECT COUNT(*) AS users FROM users")
    except ReportedFailure as exc:
        print(f"{exc.report.title}: {' '.join(exc.report.paragraphs)}")
        return 1
    print(f"Seeded {count['users']} users.")
    print(
        "Sample database is ready. Point the app at it by adding "
        f'database_config = "{args.output}" to {CONFIG_FILE}.'
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
