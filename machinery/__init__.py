"""
Machinery

Inspects Linux systems over SSH or inside containers and stores what it
finds as system descriptions, which can then be shown, compared, validated
and exported to image building and provisioning formats.

Scopes:
- os, packages, patterns, repositories
- users, groups, services
- changed-config-files, changed-managed-files, unmanaged-files

Usage:
    from machinery.filter import Filter
    from machinery.inspect_task import InspectionCoordinator

    coordinator = InspectionCoordinator(ui)
    description = coordinator.inspect_system(request)
    print(description.scope_names())
"""

__version__ = "1.0.0"
