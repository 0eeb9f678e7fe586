from .bundle import read_bundle, restore_bundle, serialize_snapshot, write_bundle

__all__ = ["read_bundle", "restore_bundle", "serialize_snapshot", "write_bundle"]
