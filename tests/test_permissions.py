from roost.permissions import Permissions, PermissionStore


def test_get_permissions_snapshot() -> None:
    store = PermissionStore({"admin": [1, 2], "blacklist": [3]})

    perms = store.get_permissions(1)

    assert perms == Permissions(user_id=1, names=frozenset({"admin"}))
    assert perms.has("admin")
    assert "blacklist" not in perms
    assert not perms.is_blacklisted


def test_snapshot_is_not_live_linked() -> None:
    store = PermissionStore()
    perms = store.get_permissions(10)

    store.add("admin", 10)

    assert not perms.has("admin")
    assert store.get_permissions(10).has("admin")


def test_add_remove_and_members() -> None:
    store = PermissionStore()
    store.add("mods", 1, 2, 2)
    store.remove("mods", 2, 99)
    store.remove("missing", 1)

    assert store.members("mods") == frozenset({1})
    assert store.lists() == ["mods"]
    assert store.contains("mods", 1)
    assert not store.contains("mods", None)


def test_blacklist_helpers() -> None:
    store = PermissionStore()
    store.blacklist(5)

    assert store.is_blacklisted(None, 5)
    assert not store.is_blacklisted(None, 6)
    assert store.get_permissions(5).is_blacklisted
    assert store.is_blacklisted(8, list_name="banned") is False


def test_anonymous_permissions_empty() -> None:
    store = PermissionStore({"admin": [1]})

    perms = store.get_permissions(None)

    assert perms.user_id is None
    assert perms.names == frozenset()


def test_clear_list() -> None:
    store = PermissionStore({"admin": [1]})
    store.clear("admin")

    assert store.lists() == []
    assert store.members("admin") == frozenset()
