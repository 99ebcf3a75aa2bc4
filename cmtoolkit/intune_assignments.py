#!/usr/bin/env python3
"""
Which Entra groups an Intune app is assigned to, or which apps a group gets.

Usage:
  intune-app-assignments --app "Company Portal"
  intune-app-assignments --group "SG-Intune-Finance" --json
"""
import argparse
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .cli import add_common_arguments, configure_logging, print_records
from .config import Settings
from .errors import CmToolkitError
from .graph import GraphClient, odata_literal

logger = logging.getLogger(__name__)

APPS_PATH = "deviceAppManagement/mobileApps"

GROUP_TARGET = "#microsoft.graph.groupAssignmentTarget"
EXCLUSION_TARGET = "#microsoft.graph.exclusionGroupAssignmentTarget"
SPECIAL_TARGETS = {
    "#microsoft.graph.allLicensedUsersAssignmentTarget": "All users",
    "#microsoft.graph.allDevicesAssignmentTarget": "All devices",
}


@dataclass
class AppAssignment:
    application_name: str
    application_id: str
    group_name: str
    group_id: Optional[str]
    filter_type: str
    intent: str
    excluded: bool = False


class _GroupNames:
    """Resolves group ids to display names, once per id."""

    def __init__(self, graph):
        self.graph = graph
        self.cache: Dict[str, str] = {}

    def __call__(self, group_id):
        if group_id not in self.cache:
            group = self.graph.get(f"groups/{group_id}", params={"$select": "id,displayName"})
            self.cache[group_id] = group["displayName"] if group else "?"
        return self.cache[group_id]


def _to_assignment(app, assignment, group_names):
    target = assignment.get("target") or {}
    kind = target.get("@odata.type", "")
    group_id = target.get("groupId")
    if kind in SPECIAL_TARGETS:
        group_name = SPECIAL_TARGETS[kind]
    elif group_id:
        group_name = group_names(group_id)
    else:
        group_name = "?"
    return AppAssignment(
        application_name=app.get("displayName", ""),
        application_id=app["id"],
        group_name=group_name,
        group_id=group_id,
        filter_type=target.get("deviceAndAppManagementAssignmentFilterType") or "none",
        intent=assignment.get("intent", ""),
        excluded=kind == EXCLUSION_TARGET,
    )


def find_apps(graph, app_name):
    return graph.get_all(APPS_PATH, params={
        "$filter": f"displayName eq {odata_literal(app_name)}",
        "$expand": "assignments",
    })


def find_groups(graph, group_name):
    """Exact display-name matches; $search narrows, the comparison decides."""
    term = group_name.replace('"', '\\"')
    candidates = graph.get_all("groups", params={
        "$search": f'"displayName:{term}"',
        "$select": "id,displayName",
    })
    return [g for g in candidates if g.get("displayName") == group_name]


def targets_group(assignment, group_id):
    """
    True when the assignment points at group_id.

    The target's groupId is compared exactly. Only when the target carries no
    groupId does the assignment id's "<groupId>_" prefix decide, since Intune
    builds assignment ids from the group id plus an ordinal suffix.
    """
    target = assignment.get("target") or {}
    if target.get("groupId"):
        return target["groupId"].lower() == group_id.lower()
    return assignment.get("id", "").lower().startswith(f"{group_id.lower()}_")


def assignments_for_app(graph, app_name) -> Optional[List[AppAssignment]]:
    apps = find_apps(graph, app_name)
    if not apps:
        logger.info("No Intune app named '%s'", app_name)
        return None
    group_names = _GroupNames(graph)
    return [
        _to_assignment(app, assignment, group_names)
        for app in apps
        for assignment in app.get("assignments", [])
    ]


def assignments_for_group(graph, group_name) -> Optional[List[AppAssignment]]:
    groups = find_groups(graph, group_name)
    if not groups:
        logger.info("No group named '%s'", group_name)
        return None

    apps = graph.get_all(APPS_PATH, params={"$expand": "assignments"})
    group_names = _GroupNames(graph)
    for g in groups:
        group_names.cache[g["id"]] = g["displayName"]

    results = []
    for app in apps:
        for assignment in app.get("assignments", []):
            for g in groups:
                if targets_group(assignment, g["id"]):
                    a = _to_assignment(app, assignment, group_names)
                    if a.group_id is None:
                        a.group_id, a.group_name = g["id"], g["displayName"]
                    results.append(a)
    return results


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Intune app to group assignments")
    which = ap.add_mutually_exclusive_group(required=True)
    which.add_argument("--app", help="Application display name")
    which.add_argument("--group", help="Group display name")
    ap.add_argument("--json", action="store_true", help="Print results as JSON")
    add_common_arguments(ap)
    args = ap.parse_args(argv)
    configure_logging(args.verbose)

    graph = None
    try:
        graph = GraphClient.from_settings(Settings.from_env())
        if args.app is not None:
            subject = f"Application '{args.app}'"
            results = assignments_for_app(graph, args.app)
        else:
            subject = f"Group '{args.group}'"
            results = assignments_for_group(graph, args.group)
    except CmToolkitError as e:
        logger.error("%s", e)
        return 1
    finally:
        if graph is not None:
            graph.close()

    if results is None:
        print(f"{subject} not found.")
    elif not results:
        print(f"No assignments found for {subject}.")
    else:
        print_records(sorted(results, key=lambda a: (a.application_name, a.group_name)), as_json=args.json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
