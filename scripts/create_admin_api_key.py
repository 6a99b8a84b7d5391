"""Create an admin API key for local development and print it once."""
import argparse

from settlement.db import new_session
from settlement.models.api_key import ApiKey, ApiScope
from settlement.utils.apikey import gen_key
from settlement.utils.audit import log_audit


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--name", default="dev-admin-key")
    parser.add_argument("--principal-id", default="ops-admin")
    args = parser.parse_args()

    db = new_session()
    raw, prefix, key_hash = gen_key()
    try:
        api_key = ApiKey(
            name=args.name,
            prefix=prefix,
            key_hash=key_hash,
            scope=ApiScope.admin,
            principal_id=args.principal_id,
            is_active=True,
        )
        db.add(api_key)
        db.flush()
        log_audit(
            db,
            actor="script:create_admin_api_key",
            action="CREATE_API_KEY",
            entity="ApiKey",
            entity_id=api_key.id,
            data={"name": api_key.name, "scope": api_key.scope.value},
        )
        db.commit()

        print("Admin API key created")
        print(f"    X-API-Key: {raw}")
        print(f"(DB id: {api_key.id}, scope: {api_key.scope.value})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
