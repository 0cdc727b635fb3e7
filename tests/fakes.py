"""
In-process fake Vault and service runner for lifecycle tests.

FakeVault answers the HTTP API through httpx.MockTransport. It models the two
server modes closely enough for end-to-end migrations:

- ephemeral (`server -dev ...`): initialized, unsealed, secrets lost on every restart
- durable: state kept in `disk` across restarts, sealed on start, threshold unsealing

FakeServiceRunner restarts the fake according to the launch command, the same way
the compose service would.
"""

import base64
import json
import secrets
from pathlib import Path
from typing import Any

import httpx

from vaultmode.protocols import StartOutcome, StopOutcome


def no_sleep(_seconds: float) -> None:
    """Sleep replacement so polling loops run instantly."""


class FakeVault:
    def __init__(self, ephemeral_token: str = "root"):
        self.ephemeral_token = ephemeral_token
        self.running = False
        self.durable = False
        self.initialized = False
        self.sealed = True
        self.memory: dict[str, dict[str, Any]] = {}
        self.disk: dict[str, Any] | None = None
        self.unseal_progress: set[str] = set()
        self.fail_writes: set[str] = set()
        self.fail_reads: set[str] = set()
        self.requests: list[tuple[str, str]] = []
        self.starts = 0

    # ------------------------------------------------------------------
    # Process model
    # ------------------------------------------------------------------

    def boot(self, durable: bool) -> None:
        self.running = True
        self.durable = durable
        self.starts += 1
        self.unseal_progress = set()
        if durable:
            self.initialized = self.disk is not None
            self.sealed = True
        else:
            self.memory = {}
            self.initialized = True
            self.sealed = False

    def shutdown(self) -> None:
        self.running = False

    def wipe_disk(self) -> None:
        self.disk = None

    @property
    def store(self) -> dict[str, dict[str, Any]]:
        if self.durable:
            assert self.disk is not None
            return self.disk["secrets"]
        return self.memory

    @property
    def root_token(self) -> str | None:
        if self.durable:
            return self.disk["root_token"] if self.disk else None
        return self.ephemeral_token

    @property
    def threshold(self) -> int:
        return self.disk["threshold"] if self.disk else 0

    @property
    def shares(self) -> list[str]:
        return list(self.disk["keys"]) if self.disk else []

    def seed(self, path: str, data: dict[str, Any]) -> None:
        """Write a secret directly (path like 'secret/dev/ALPHA')."""
        self.store[path.removeprefix("secret/")] = dict(data)

    def secret(self, path: str) -> dict[str, Any] | None:
        return self.store.get(path.removeprefix("secret/"))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    @staticmethod
    def _json(status: int, payload: dict[str, Any]) -> httpx.Response:
        return httpx.Response(status, json=payload)

    def _seal_status(self) -> dict[str, Any]:
        return {
            "type": "shamir",
            "initialized": self.initialized,
            "sealed": self.sealed,
            "t": self.threshold,
            "n": len(self.shares),
            "progress": len(self.unseal_progress),
            "version": "1.15.0",
        }

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if not self.running:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path.removeprefix("/v1/")
        self.requests.append((request.method, path))

        if path == "sys/health":
            body = {"initialized": self.initialized, "sealed": self.sealed, "standby": False, "version": "1.15.0"}
            if not self.initialized:
                return self._json(501, body)
            return self._json(503 if self.sealed else 200, body)
        if path == "sys/seal-status":
            return self._json(200, self._seal_status())
        if path == "sys/init":
            return self._init(json.loads(request.content))
        if path == "sys/unseal":
            return self._unseal(json.loads(request.content)["key"])
        if path.startswith("secret/"):
            return self._kv(request, path)
        return self._json(404, {"errors": []})

    def _init(self, body: dict[str, Any]) -> httpx.Response:
        if self.initialized:
            return self._json(400, {"errors": ["Vault is already initialized"]})
        shares = [secrets.token_hex(32) for _ in range(body["secret_shares"])]
        self.disk = {
            "keys": shares,
            "threshold": body["secret_threshold"],
            "root_token": f"hvs.{secrets.token_urlsafe(18)}",
            "secrets": {},
        }
        self.initialized = True
        self.sealed = True
        return self._json(
            200,
            {
                "keys": shares,
                "keys_base64": [base64.b64encode(bytes.fromhex(k)).decode() for k in shares],
                "root_token": self.disk["root_token"],
            },
        )

    def _normalize_share(self, key: str) -> str | None:
        if key in self.shares:
            return key
        try:
            as_hex = base64.b64decode(key, validate=True).hex()
        except ValueError:
            return None
        return as_hex if as_hex in self.shares else None

    def _unseal(self, key: str) -> httpx.Response:
        if not self.initialized:
            return self._json(400, {"errors": ["Vault is not initialized"]})
        if not self.sealed:
            return self._json(200, self._seal_status())
        share = self._normalize_share(key)
        if share is None:
            return self._json(400, {"errors": ["Unseal failed, invalid key"]})
        self.unseal_progress.add(share)
        if len(self.unseal_progress) >= self.threshold:
            self.sealed = False
            self.unseal_progress = set()
        return self._json(200, self._seal_status())

    def _kv(self, request: httpx.Request, path: str) -> httpx.Response:
        if self.sealed:
            return self._json(503, {"errors": ["Vault is sealed"]})
        if request.headers.get("X-Vault-Token") != self.root_token:
            return self._json(403, {"errors": ["permission denied"]})

        kind, _, relative = path.removeprefix("secret/").partition("/")
        relative = relative.strip("/")

        if kind == "metadata" and request.url.params.get("list") == "true":
            prefix = f"{relative}/"
            children = set()
            for stored in self.store:
                if stored.startswith(prefix):
                    rest = stored[len(prefix) :]
                    head, sep, _ = rest.partition("/")
                    children.add(f"{head}/" if sep else head)
            if not children:
                return self._json(404, {"errors": []})
            return self._json(200, {"data": {"keys": sorted(children)}})

        if kind == "data" and request.method == "GET":
            if relative in self.fail_reads:
                return self._json(500, {"errors": ["internal error"]})
            if relative not in self.store:
                return self._json(404, {"errors": []})
            return self._json(200, {"data": {"data": self.store[relative], "metadata": {"version": 1}}})

        if kind == "data" and request.method in ("POST", "PUT"):
            if relative in self.fail_writes:
                return self._json(500, {"errors": ["internal error"]})
            self.store[relative] = json.loads(request.content)["data"]
            return self._json(200, {"data": {"version": 1}})

        return self._json(405, {"errors": ["unsupported operation"]})


class FakeServiceRunner:
    """Restarts a FakeVault the way `docker compose up -d` restarts the container."""

    def __init__(self, vault: FakeVault, storage_dir: Path):
        self.vault = vault
        self.storage_dir = storage_dir
        self.stop_outcome: StopOutcome | None = None
        self.start_outcome: StartOutcome | None = None
        self.boot_on_start = True
        self.launch_commands: list[str] = []
        self.stops = 0

    def is_running(self) -> bool | None:
        return self.vault.running

    def stop(self) -> StopOutcome:
        self.stops += 1
        if self.stop_outcome is not None:
            return self.stop_outcome
        if not self.vault.running:
            return StopOutcome.NOT_RUNNING
        self.vault.shutdown()
        return StopOutcome.STOPPED

    def start(self, launch_command: str) -> StartOutcome:
        self.launch_commands.append(launch_command)
        if self.start_outcome is not None:
            return self.start_outcome
        if not self.boot_on_start:
            return StartOutcome.STARTED

        durable = "-dev" not in launch_command
        if durable:
            # Raft data lives in the storage directory: an empty or missing directory is a new database
            if not self.storage_dir.is_dir() or not any(self.storage_dir.iterdir()):
                self.vault.wipe_disk()
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            (self.storage_dir / "vault.db").write_text("raft")
        self.vault.boot(durable)
        return StartOutcome.STARTED

    def describe(self) -> str:
        return "fake compose up -d vault"
