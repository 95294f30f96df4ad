"""
Seed Module Permissions Script
This script mirrors the module capability matrix and the legacy portal role
contexts into the module_permissions and context_permissions tables.
Can be run manually or as part of a deploy job:

    python -m portal_access.scripts.seed_permissions
"""

import sys
from portal_access.config.permissions_config import PERMISSION_MATRIX, PORTAL_ROLE_CONTEXTS
from portal_access.database.supabase_client import get_service_supabase
from supabase import Client
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CONTEXTS = ["licensing", "publishing"]


def seed_module_permissions(supabase: Client):
    """Seed module_permissions from config"""
    logger.info("Seeding module permissions...")

    permissions = PERMISSION_MATRIX["permissions"]
    created_count = 0
    updated_count = 0

    for perm in permissions:
        try:
            existing = supabase.table("module_permissions")\
                .select("id")\
                .eq("name", perm["name"])\
                .execute()

            if existing.data:
                supabase.table("module_permissions")\
                    .update({
                        "module": perm["module"],
                        "action": perm["action"],
                        "description": perm["description"]
                    })\
                    .eq("name", perm["name"])\
                    .execute()
                updated_count += 1
                logger.debug(f"Updated permission: {perm['name']}")
            else:
                supabase.table("module_permissions").insert({
                    "name": perm["name"],
                    "module": perm["module"],
                    "action": perm["action"],
                    "description": perm["description"]
                }).execute()
                created_count += 1
                logger.debug(f"Created permission: {perm['name']}")
        except Exception as e:
            logger.error(f"Error processing permission {perm['name']}: {e}")

    logger.info(f"Module permissions seeded: {created_count} created, {updated_count} updated")
    return created_count + updated_count


def seed_context_permissions(supabase: Client):
    """Seed one context_permissions row per (legacy role, context), allowed or not"""
    logger.info("Seeding context permissions...")

    processed = 0
    for role, contexts in PORTAL_ROLE_CONTEXTS.items():
        try:
            existing = supabase.table("context_permissions")\
                .select("context")\
                .eq("role", role)\
                .execute()
            existing_contexts = {row["context"] for row in existing.data} if existing.data else set()

            for context in CONTEXTS:
                allowed = context in contexts
                if context in existing_contexts:
                    supabase.table("context_permissions")\
                        .update({"allowed": allowed})\
                        .eq("role", role)\
                        .eq("context", context)\
                        .execute()
                else:
                    supabase.table("context_permissions").insert({
                        "role": role,
                        "context": context,
                        "allowed": allowed
                    }).execute()
                processed += 1
        except Exception as e:
            logger.error(f"Error processing context permissions for {role}: {e}")

    logger.info(f"Context permissions seeded: {processed} rows processed")
    return processed


def main():
    """Main function to seed module and context permissions"""
    try:
        supabase = get_service_supabase()

        logger.info("Starting permission seeding...")
        perm_count = seed_module_permissions(supabase)
        context_count = seed_context_permissions(supabase)

        logger.info("Seeding completed successfully!")
        logger.info(f"Total: {perm_count} module permissions, {context_count} context rows processed")

    except Exception as e:
        logger.error(f"Error during seeding: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
