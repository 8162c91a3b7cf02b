def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def string_hash(key: str) -> int:
    """32-bit signed hash, identical to Java's ``String.hashCode`` for BMP text."""
    h = 0
    for char in key:
        h = _to_int32(h * 31 + ord(char))
    return h


def bucket(key: str) -> int:
    """Maps a key onto a stable bucket in [0, 99]."""
    return abs(string_hash(key)) % 100


def flag_bucket(flag_key: str, user_id: str) -> int:
    return bucket(f"{flag_key}:{user_id}")


def experiment_bucket(experiment_id: str, user_id: str) -> int:
    return bucket(f"{experiment_id}:{user_id}")
