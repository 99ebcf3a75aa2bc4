import json
import re

import pytest

from cmtoolkit.errors import AdminServiceError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason
        self.text = json.dumps(payload) if payload is not None else ""
        self.content = self.text.encode()

    def json(self):
        return self._payload


class FakeSession:
    """requests.Session stand-in: hands out queued responses and records calls."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []
        self.auth = None
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.responses.pop(0)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)

    def close(self):
        self.closed = True


FILTER = re.compile(r"^(\w+) eq (?:'((?:[^']|'')*)'|(\d+))$")
KEYS = {"SMS_AutoDeployment": "AutoDeploymentID"}

# only a keyed get() returns these, as on a real provider
LAZY = {
    "SMS_AutoDeployment": {"UpdateRuleXML", "DeploymentTemplate", "ContentTemplate", "Schedule"},
    "SMS_ADRDeploymentSettings": {"DeploymentTemplate"},
}


class FakeAdminService:
    """In-memory stand-in for AdminServiceClient over a handful of WMI classes."""

    def __init__(self, instances=None, tokens=None):
        self.instances = {k: [dict(i) for i in v] for k, v in (instances or {}).items()}
        self.tokens = tokens or []
        self.written_tokens = None
        self.fail_collections = set()
        self.queries = []
        self.gets = []
        self.updates = []
        self.creates = []

    def _match(self, instance, flt):
        if not flt:
            return True
        m = FILTER.match(flt)
        assert m, f"unsupported filter {flt}"
        prop, text, number = m.groups()
        if number is not None:
            return int(instance.get(prop, -1)) == int(number)
        return instance.get(prop) == text.replace("''", "'")

    def query(self, class_name, filter=None, select=None):
        self.queries.append((class_name, filter, select))
        lazy = LAZY.get(class_name, set())
        rows = []
        for i in self.instances.get(class_name, []):
            if not self._match(i, filter):
                continue
            row = {k: v for k, v in i.items() if k not in lazy}
            if select:
                row = {k: v for k, v in row.items() if k in select}
            rows.append(row)
        return rows

    def _is(self, instance, class_name, key):
        if isinstance(key, dict):
            return all(instance.get(k) == v for k, v in key.items())
        return instance.get(KEYS[class_name]) == key

    def get(self, class_name, key):
        self.gets.append((class_name, key))
        for i in self.instances.get(class_name, []):
            if self._is(i, class_name, key):
                return dict(i)
        return None

    def create(self, class_name, properties):
        self.creates.append((class_name, dict(properties)))
        if properties.get("CollectionID") in self.fail_collections and class_name != "SMS_AutoDeployment":
            raise AdminServiceError(f"Status [500]\tReason [boom] {properties['CollectionID']}")
        created = dict(properties)
        if class_name in KEYS:
            existing = [i[KEYS[class_name]] for i in self.instances.get(class_name, [])]
            created[KEYS[class_name]] = max(existing + [0]) + 1
        self.instances.setdefault(class_name, []).append(created)
        return dict(created)

    def update(self, class_name, key, properties):
        self.updates.append((class_name, key, dict(properties)))
        for i in self.instances.get(class_name, []):
            if self._is(i, class_name, key):
                i.update(properties)
        return {}

    def invoke(self, class_name, method, parameters=None):
        assert class_name == "SMS_ScheduleMethods"
        if method == "ReadFromString":
            return {"ReturnValue": 0, "TokenData": [dict(t) for t in self.tokens]}
        if method == "WriteToString":
            self.written_tokens = parameters["TokenData"]
            return {"ReturnValue": 0, "StringData": "00C1E1C000100008"}
        raise AssertionError(method)


@pytest.fixture
def fake_cm():
    return FakeAdminService()
