from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from brandguard.db.models import BrandRulesCache


class RulesCacheRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, checksum: str) -> BrandRulesCache | None:
        return self.session.query(BrandRulesCache).filter(BrandRulesCache.checksum == checksum).first()

    def put(self, checksum: str, rules_data: dict, total_rules: int) -> BrandRulesCache:
        row = self.get(checksum)
        if row is None:
            row = BrandRulesCache(id=str(uuid.uuid4()), checksum=checksum)
            self.session.add(row)
        row.rules_data = rules_data
        row.total_rules = total_rules
        row.created_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self.session.commit()
        return row
