"""
chatroom.core.names
~~~~~~~~~~~~~~~~~~~

随机名称与参与者 ID 生成。
"""
from __future__ import annotations

import random
import re
import uuid

_ADJECTIVES: tuple[str, ...] = (
    "Silly", "Wacky", "Goofy", "Zany", "Clever", "Daring", "Mystic",
    "Cosmic", "Robo", "Cyber", "Sneaky", "Tricky", "Brave", "Bold",
    "Swift", "Agile", "Gentle", "Quiet", "Lucky", "Magic",
)

_NOUNS: tuple[str, ...] = (
    "Wombat", "Narwhal", "Penguin", "Capybara", "Fox", "Badger", "Otter",
    "Panda", "Sloth", "Quokka", "Robot", "Android", "Cipher", "Sprite",
    "Phantom", "Specter", "Jester", "Oracle", "Golem", "Sphinx",
)

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def generate_silly_name(rng: random.Random | None = None) -> str:
    """生成形如 ``CosmicOtter42`` 的随机名字。"""
    rng = rng or random
    return f"{rng.choice(_ADJECTIVES)}{rng.choice(_NOUNS)}{rng.randrange(100)}"


def generate_player_id() -> str:
    """生成进程内唯一的 AI 参与者 ID。"""
    return f"ai_{uuid.uuid4().hex[:12]}"


def validate_username(username: str | None, max_length: int = 20) -> str | None:
    """校验用户名格式，合法返回 None，否则返回错误原因。"""
    if not username or not username.strip():
        return "Username cannot be empty."
    if len(username) > max_length:
        return f"Username cannot exceed {max_length} characters."
    if not USERNAME_PATTERN.match(username):
        return "Username can only contain letters, numbers, underscores, and hyphens."
    return None
