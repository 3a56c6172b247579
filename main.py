"""
switchlink entry point.

Builds the resilience context from the environment, logs in, lists the
switches of every residence and prints a health snapshot.
"""

import asyncio
import json
import sys

from loguru import logger

from switchlink.devices import LevitonApi
from switchlink.sanitizers import sanitize_error
from switchlink.services import ResilienceContext, ServiceClient, ServiceError
from switchlink.settings import Settings, validate_settings


async def main() -> None:
    settings = validate_settings(Settings.from_env())

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    logger.info("Starting switchlink...")

    context = ResilienceContext.from_settings(settings)
    client = ServiceClient(
        settings.api_base_url,
        context,
        timeout=settings.request_timeout,
        debug=settings.debug,
    )
    api = LevitonApi(
        client,
        settings.leviton_email,
        settings.leviton_password,
        use_cache=settings.use_cache,
    )

    try:
        if not api.is_configured():
            logger.warning("LEVITON_EMAIL / LEVITON_PASSWORD not set, skipping discovery")
            return

        session = await api.login()
        token = session["id"]

        permissions = await api.get_residential_permissions(session["userId"], token)
        for permission in permissions or []:
            account_id = permission.get("residentialAccountId")
            if account_id is None:
                continue

            residences = await api.get_residences(account_id, token)
            for residence in residences or []:
                devices = await api.get_devices(residence["id"], token)
                logger.info(
                    f"Residence {residence.get('name', residence['id'])}: "
                    f"{len(devices or [])} switches"
                )

    except ServiceError as e:
        logger.error(f"Discovery failed ({e.kind.value}): {sanitize_error(e)}")
    finally:
        print(json.dumps(client.get_status(), indent=2, default=str))
        await client.close()
        logger.info("switchlink stopped")


if __name__ == "__main__":
    asyncio.run(main())
