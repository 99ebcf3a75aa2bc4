#!/usr/bin/env python3
"""
Resolve primary devices for a user or for every member of an AD group.

Only affinities an administrator declared in the console count as primary
(source 4); usage-based and user-declared affinities are ignored.

Usage:
  cm-user-devices "Jane Doe"
  cm-group-devices Finance-Staff --recursive
"""
import argparse
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .adminservice import AdminServiceClient, odata_literal
from .cli import add_common_arguments, configure_logging, print_records
from .config import Settings
from .directory import DirectoryClient
from .errors import CmToolkitError

logger = logging.getLogger(__name__)

PRIMARY_DEVICE_SOURCE = 4
RELATIONSHIP_CLASS = "SMS_UserMachineRelationship"


@dataclass
class AffinityRecord:
    sam_account_name: str
    computers: Tuple[str, ...] = ()


def resolve_user(directory, name):
    """
    Find an AD account by sAMAccountName, retrying "first last" as "first.last".
    """
    user = directory.find_user(name)
    if user is None and " " in name:
        dotted = name.replace(" ", ".")
        logger.debug("No account '%s', retrying as '%s'", name, dotted)
        user = directory.find_user(dotted)
    return user


def _sources(record):
    sources = record.get("Sources")
    if sources is None:
        return ()
    if isinstance(sources, (list, tuple)):
        return tuple(int(s) for s in sources)
    return (int(sources),)


def primary_computers(cm, domain, sam_account_name) -> Tuple[str, ...]:
    unique_name = f"{domain}\\{sam_account_name}" if domain else sam_account_name
    records = cm.query(
        RELATIONSHIP_CLASS,
        filter=f"UniqueUserName eq {odata_literal(unique_name)}",
        select=["ResourceName", "UniqueUserName", "Sources", "IsActive"],
    )
    names = {
        r["ResourceName"]
        for r in records
        if PRIMARY_DEVICE_SOURCE in _sources(r) and r.get("IsActive", True)
    }
    return tuple(sorted(names))


def primary_devices_for_user(directory, cm, domain, name) -> Optional[AffinityRecord]:
    user = resolve_user(directory, name)
    if user is None:
        logger.info("User '%s' not found in Active Directory", name)
        return None
    return AffinityRecord(user.sam_account_name, primary_computers(cm, domain, user.sam_account_name))


def primary_devices_for_group(directory, cm, domain, group_name, recursive=False) -> Optional[List[AffinityRecord]]:
    """
    One AffinityRecord per group member that has at least one primary device.

    None means the group itself does not exist; an empty list means it
    exists but none of its members has a primary device.
    """
    group = directory.find_group(group_name)
    if group is None:
        logger.info("Group '%s' not found in Active Directory", group_name)
        return None

    members = directory.group_members(group, recursive=recursive)
    logger.debug("%d member(s) in %s", len(members), group.name)
    records = []
    for member in members:
        computers = primary_computers(cm, domain, member.sam_account_name)
        if computers:
            records.append(AffinityRecord(member.sam_account_name, computers))
    return records


def _run(lookup, argv, description, extra_args=None):
    ap = argparse.ArgumentParser(description=description)
    ap.add_argument("name")
    if extra_args:
        extra_args(ap)
    ap.add_argument("--json", action="store_true", help="Print results as JSON")
    add_common_arguments(ap)
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    settings = Settings.from_env()
    cm = None
    try:
        settings.require("domain")
        cm = AdminServiceClient.from_settings(settings)
        with DirectoryClient(settings) as directory:
            return lookup(directory, cm, settings.domain, args)
    except CmToolkitError as e:
        logger.error("%s", e)
        return 1
    finally:
        if cm is not None:
            cm.close()


def _user_lookup(directory, cm, domain, args):
    record = primary_devices_for_user(directory, cm, domain, args.name)
    if record is None:
        print(f"User '{args.name}' not found.")
    elif not record.computers:
        print(f"No primary devices found for {record.sam_account_name}.")
    else:
        print_records([record], as_json=args.json)
    return 0


def _group_lookup(directory, cm, domain, args):
    records = primary_devices_for_group(directory, cm, domain, args.name, recursive=args.recursive)
    if records is None:
        print(f"Group '{args.name}' not found.")
    elif not records:
        print(f"No primary devices found for members of {args.name}.")
    else:
        print_records(records, as_json=args.json)
    return 0


def user_main(argv=None) -> int:
    return _run(_user_lookup, argv, "Primary devices of a user")


def group_main(argv=None) -> int:
    def extra(ap):
        ap.add_argument("--recursive", action="store_true", help="Include members of nested groups")
    return _run(_group_lookup, argv, "Primary devices of every member of an AD group", extra)


if __name__ == "__main__":
    raise SystemExit(user_main())
