"""
Fixed osquery SQL used by the collector. All three are read-only.
"""

OS_VERSION = """
    SELECT
        name,
        version,
        platform
    FROM os_version
    LIMIT 1;
"""

OSQUERY_VERSION = """
    SELECT
        version
    FROM osquery_info
    LIMIT 1;
"""

# Only bundles under /Applications with a bundle identifier, most recently opened first
INSTALLED_APPS = """
    SELECT
        name,
        path,
        bundle_identifier,
        bundle_name,
        bundle_short_version,
        display_name,
        minimum_system_version,
        last_opened_time
    FROM apps
    WHERE
        bundle_identifier IS NOT NULL
        AND path LIKE '/Applications/%'
    ORDER BY last_opened_time DESC;
"""
