from pathlib import Path
from typing import Callable

import pytest

KEBAB_PLAN = """\
# Auth plan

## Task 1: Add auth service

- Create `services/UserAuth.service.ts` with the login flow
- Run `npm test` to verify

## Task 2: Final verification

- Run `npm test`
"""

VARIANT_PLAN = """\
# Profile plan

## Task 1: Load profiles

- Call `getUser` from the profile loader
- Run `pytest tests/test_user_store.py` to verify

## Task 2: Verify

- Run `pytest` to confirm everything passes
"""

APPROVED_PLAN = """\
# Store plan

## Task 1: Extend the store

- Update `src/user_store.py` to cache lookups
- Run `pytest` to verify

## Task 2: Final checks

- Run `pytest`
"""


def write_tree(root: Path, files: dict[str, str]) -> Path:
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_tree(tmp_path) -> Callable[[str, dict[str, str]], Path]:
    def _make(name: str, files: dict[str, str]) -> Path:
        return write_tree(tmp_path / name, files)

    return _make


@pytest.fixture
def services_codebase(make_tree) -> Path:
    return make_tree(
        "web",
        {
            "services/user.service.ts": "export class UserService {}\n",
            "services/payment.service.ts": "export class PaymentService {}\n",
            "services/notification.service.ts": "export class NotificationService {}\n",
            "package.json": '{\n  "name": "web"\n}\n',
        },
    )


@pytest.fixture
def python_codebase(make_tree) -> Path:
    return make_tree(
        "store",
        {
            "src/user_store.py": (
                "class UserStore:\n"
                "    def get_user(self, user_id):\n"
                "        return self._users[user_id]\n"
            ),
            "src/order_store.py": "def load_orders(path):\n    return []\n",
            "config/app.yaml": "cache:\n  ttl: 300\n",
        },
    )


@pytest.fixture
def write_plan(tmp_path) -> Callable[[str], Path]:
    def _write(text: str, name: str = "plan.md") -> Path:
        path = tmp_path / "plans" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def kebab_plan() -> str:
    return KEBAB_PLAN


@pytest.fixture
def variant_plan() -> str:
    return VARIANT_PLAN


@pytest.fixture
def approved_plan() -> str:
    return APPROVED_PLAN
