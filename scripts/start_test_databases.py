"""Launch the PostgreSQL and MySQL Docker containers used by the live tests."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ServerSpec:
    engine: str
    container: str
    image: str
    host_port: int
    container_port: int
    environment: tuple[str, ...]
    ready_command: tuple[str, ...]


# Postgres 15 stopped granting CREATE on the public schema to every role,
# and the live tests connect as a non-owner tenant user.
SERVERS = {
    "postgres": ServerSpec(
        engine="postgres",
        container="dbwrangler-postgres",
        image="postgres:14-alpine",
        host_port=15432,
        container_port=5432,
        environment=("POSTGRES_PASSWORD=postgresrootpassword",),
        ready_command=("pg_isready", "-U", "postgres"),
    ),
    "mysql": ServerSpec(
        engine="mysql",
        container="dbwrangler-mysql",
        image="mysql:8.0",
        host_port=13306,
        container_port=3306,
        environment=("MYSQL_ROOT_PASSWORD=mysqlrootpassword", "MYSQL_ROOT_HOST=%"),
        ready_command=("mysqladmin", "ping", "-h", "127.0.0.1", "-uroot", "-pmysqlrootpassword"),
    ),
}


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(server: ServerSpec) -> None:
    if container_exists(server.container):
        print(f"Container '{server.container}' already exists. Reusing it.")
        run(["docker", "start", server.container], check=False)
    else:
        command = ["docker", "run", "-d", "--name", server.container]
        for variable in server.environment:
            command.extend(["-e", variable])
        command.extend(["-p", f"{server.host_port}:{server.container_port}", server.image])
        run(command)


def wait_for_start(server: ServerSpec, retries: int = 60, delay: float = 1.0) -> bool:
    for _ in range(retries):
        result = subprocess.run(
            ["docker", "exec", server.container, *server.ready_command],
            text=True,
            capture_output=True,
        )
        if result.returncode == 0:
            return True
        time.sleep(delay)
    print(f"Warning: {server.engine} did not report ready state; continuing anyway.")
    return False


def stop_container(server: ServerSpec) -> None:
    if container_exists(server.container):
        run(["docker", "rm", "-f", server.container], check=False)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "engines",
        nargs="*",
        choices=sorted(SERVERS),
        help="Servers to start (default: all)",
    )
    parser.add_argument("--stop", action="store_true", help="Remove the containers instead of starting them")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    servers = [SERVERS[name] for name in (args.engines or sorted(SERVERS))]
    try:
        if args.stop:
            for server in servers:
                stop_container(server)
            return 0
        for server in servers:
            start_container(server)
        for server in servers:
            wait_for_start(server)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    flags = " ".join(f"DBWRANGLER_LIVE_{server.engine.upper()}=1" for server in servers)
    print(f"Servers are ready. Run the live tests with: {flags} pytest -m live")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
