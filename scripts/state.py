"""Gist or local-file state persistence."""

import json
import os
import tempfile
from pathlib import Path

import requests

STATE_FILENAME = "sprint_state.json"

DEFAULT_STATE = {
    "offset": 0,
    "daily_stats": {},
    "goals": {},
    "scheduled": [],
    "blacklist": [],
    "sprints": {},
    "names": {},
    "participants": {},
    "rooms": {},
}


class PersistenceError(RuntimeError):
    pass


class PersistenceTimeout(PersistenceError):
    pass


def fresh_state() -> dict:
    return json.loads(json.dumps(DEFAULT_STATE))


def _fill_defaults(state: dict) -> dict:
    # Backwards compat: ensure all keys exist
    for key, default in DEFAULT_STATE.items():
        if key not in state:
            state[key] = json.loads(json.dumps(default))
    return state


class GistState:
    """State document stored as a single file in a GitHub Gist."""

    def __init__(self, gist_token: str, gist_id: str, timeout: float = 10):
        self.token = gist_token
        self.api = f"https://api.github.com/gists/{gist_id}"
        self.timeout = timeout

    def _headers(self) -> dict:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def load(self) -> dict:
        """Fetch the state document. Raises PersistenceError when the gist can't be read."""
        try:
            resp = requests.get(self.api, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as e:
            raise PersistenceTimeout(f"gist load timed out: {e}") from e
        except requests.RequestException as e:
            raise PersistenceError(f"gist load failed: {e}") from e

        if resp.status_code != 200:
            raise PersistenceError(f"gist load failed (HTTP {resp.status_code})")

        try:
            files = resp.json().get("files", {})
            if STATE_FILENAME not in files:
                print(f"No {STATE_FILENAME} in gist, starting with empty state")
                return fresh_state()
            return _fill_defaults(json.loads(files[STATE_FILENAME]["content"]))
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"gist holds unreadable state: {e}") from e

    def save(self, state: dict) -> None:
        try:
            resp = requests.patch(
                self.api,
                headers=self._headers(),
                json={
                    "files": {
                        STATE_FILENAME: {
                            "content": json.dumps(state, indent=2)
                        }
                    }
                },
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise PersistenceTimeout(f"gist save timed out: {e}") from e
        except requests.RequestException as e:
            raise PersistenceError(f"gist save failed: {e}") from e

        if resp.status_code != 200:
            raise PersistenceError(f"gist save failed (HTTP {resp.status_code})")


class FileState:
    """State document stored as a JSON file on local disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict:
        """Read the state document. A missing file is a fresh start; an unreadable one raises."""
        if not self.path.exists():
            print(f"No state file at {self.path}, starting with empty state")
            return fresh_state()
        try:
            with open(self.path, encoding="utf-8") as f:
                return _fill_defaults(json.load(f))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"could not read {self.path}: {e}") from e

    def save(self, state: dict) -> None:
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
            os.replace(tmp, self.path)
            tmp = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"could not write {self.path}: {e}") from e
        finally:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)


def from_env(default_path: Path, timeout: float = 10):
    """Pick the Gist backend when credentials are set, else a local file."""
    gist_token = os.environ.get("GIST_TOKEN", "")
    gist_id = os.environ.get("GIST_ID", "")
    if gist_token and gist_id:
        print("Using gist state backend")
        return GistState(gist_token, gist_id, timeout=timeout)
    path = Path(os.environ.get("SPRINT_STATE_PATH", "") or default_path)
    print(f"Using file state backend at {path}")
    return FileState(path)
