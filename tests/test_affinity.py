from cmtoolkit import affinity
from cmtoolkit.affinity import (
    AffinityRecord,
    primary_devices_for_group,
    primary_devices_for_user,
    resolve_user,
)
from cmtoolkit.directory import DirectoryGroup, DirectoryUser
from conftest import FakeAdminService


class FakeDirectory:
    def __init__(self, users=(), groups=None):
        self.users = {u: DirectoryUser(u, f"CN={u},DC=corp,DC=example") for u in users}
        self.groups = groups or {}
        self.lookups = []
        self.recursive = None

    def find_user(self, name):
        self.lookups.append(name)
        return self.users.get(name)

    def find_group(self, name):
        if name not in self.groups:
            return None
        return DirectoryGroup(name, f"CN={name},DC=corp,DC=example")

    def group_members(self, group, recursive=False):
        self.recursive = recursive
        return [self.users[m] for m in self.groups[group.name]]


def relationship(user, computer, sources, active=True):
    return {"UniqueUserName": f"CORP\\{user}", "ResourceName": computer, "Sources": sources, "IsActive": active}


def cm_with(*records):
    return FakeAdminService({"SMS_UserMachineRelationship": list(records)})


def test_resolve_user_direct_hit_does_not_retry():
    ad = FakeDirectory(users=["jdoe"])
    assert resolve_user(ad, "jdoe").sam_account_name == "jdoe"
    assert ad.lookups == ["jdoe"]


def test_resolve_user_retries_spaces_as_periods():
    ad = FakeDirectory(users=["jane.doe"])
    user = resolve_user(ad, "jane doe")
    assert user.sam_account_name == "jane.doe"
    assert ad.lookups == ["jane doe", "jane.doe"]


def test_resolve_user_without_space_is_not_retried():
    ad = FakeDirectory()
    assert resolve_user(ad, "ghost") is None
    assert ad.lookups == ["ghost"]


def test_resolve_user_gives_up_after_retry():
    ad = FakeDirectory()
    assert resolve_user(ad, "no such") is None
    assert ad.lookups == ["no such", "no.such"]


def test_user_devices_keep_only_console_declared_primary():
    cm = cm_with(
        relationship("jane.doe", "PC-001", [4]),
        relationship("jane.doe", "PC-002", [6, 4]),
        relationship("jane.doe", "PC-003", [2]),
        relationship("jane.doe", "PC-004", [4], active=False),
        relationship("jane.doe", "PC-001", [4]),
        relationship("john.roe", "PC-900", [4]),
    )
    record = primary_devices_for_user(FakeDirectory(users=["jane.doe"]), cm, "CORP", "jane doe")

    assert record == AffinityRecord("jane.doe", ("PC-001", "PC-002"))
    cls, flt, _ = cm.queries[0]
    assert cls == "SMS_UserMachineRelationship"
    assert flt == "UniqueUserName eq 'CORP\\jane.doe'"


def test_user_not_in_directory_is_none():
    assert primary_devices_for_user(FakeDirectory(), cm_with(), "CORP", "ghost") is None


def test_group_not_found_is_none():
    assert primary_devices_for_group(FakeDirectory(), cm_with(), "CORP", "Nope") is None


def test_group_members_without_devices_are_left_out():
    ad = FakeDirectory(users=["a.user", "b.user", "c.user"], groups={"Finance": ["a.user", "b.user", "c.user"]})
    cm = cm_with(
        relationship("a.user", "FIN-01", [4]),
        relationship("b.user", "FIN-02", [1]),
        relationship("c.user", "FIN-03", 4),
    )
    records = primary_devices_for_group(ad, cm, "CORP", "Finance", recursive=True)

    assert records == [AffinityRecord("a.user", ("FIN-01",)), AffinityRecord("c.user", ("FIN-03",))]
    assert ad.recursive is True


def test_group_with_no_primary_devices_is_empty_list():
    ad = FakeDirectory(users=["a.user"], groups={"Finance": ["a.user"]})
    assert primary_devices_for_group(ad, cm_with(), "CORP", "Finance") == []


def test_user_main_reports_missing_domain(monkeypatch, capsys):
    monkeypatch.delenv("CM_DOMAIN", raising=False)
    monkeypatch.setattr(affinity.Settings, "from_env", classmethod(lambda cls: cls()))
    assert affinity.user_main(["jane doe"]) == 1
