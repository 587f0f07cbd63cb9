from typing import Dict, List, Optional, Set, Tuple


class FakeResponse:
    def __init__(self, data: Optional[List[Dict[str, object]]] = None):
        self.data = data or []


class FakeQuery:
    def __init__(self, table: "FakeTable", action: str, payload: Optional[Dict[str, object]] = None, **options):
        self._table = table
        self._action = action
        self._payload = payload
        self._options = options
        self._filters: List[Tuple[str, object]] = []
        self._limit: Optional[int] = None

    def eq(self, key: str, value: object) -> "FakeQuery":
        self._filters.append((key, value))
        return self

    def limit(self, value: int) -> "FakeQuery":
        self._limit = value
        return self

    def execute(self) -> FakeResponse:
        self._table.supabase.check_failure(self._table.name, self._action)
        if self._action == "select":
            rows = [r for r in self._table.rows if all(r.get(k) == v for k, v in self._filters)]
            if self._limit is not None:
                rows = rows[:self._limit]
            return FakeResponse([dict(r) for r in rows])
        if self._action == "insert":
            self._table.rows.append(dict(self._payload))
            return FakeResponse([dict(self._payload)])
        if self._action == "upsert":
            return FakeResponse([self._table.apply_upsert(self._payload, **self._options)])
        raise AssertionError(f"Unexpected action {self._action}")


class FakeTable:
    def __init__(self, supabase: "FakeSupabase", name: str, key: str):
        self.supabase = supabase
        self.name = name
        self.key = key
        self.rows: List[Dict[str, object]] = []
        self.upsert_calls: List[Dict[str, object]] = []

    def select(self, *_, **__) -> FakeQuery:
        return FakeQuery(self, "select")

    def insert(self, payload: Dict[str, object]) -> FakeQuery:
        return FakeQuery(self, "insert", payload)

    def upsert(self, payload: Dict[str, object], on_conflict: Optional[str] = None, ignore_duplicates: bool = False) -> FakeQuery:
        return FakeQuery(self, "upsert", payload, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates)

    def apply_upsert(self, payload: Dict[str, object], on_conflict: Optional[str] = None, ignore_duplicates: bool = False) -> Dict[str, object]:
        self.upsert_calls.append({"payload": dict(payload), "on_conflict": on_conflict, "ignore_duplicates": ignore_duplicates})
        key = on_conflict or self.key
        for row in self.rows:
            if row.get(key) == payload.get(key):
                if not ignore_duplicates:
                    row.update(payload)
                return dict(row)
        self.rows.append(dict(payload))
        return dict(payload)


class FakeSupabase:
    """In-memory stand-in for the three tables the bridge touches."""

    KEYS = {"sync_state": "key", "processed_bookings": "booking_id", "sync_logs": "id"}

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {name: FakeTable(self, name, key) for name, key in self.KEYS.items()}
        self.failures: Set[Tuple[str, str]] = set()

    def fail(self, table: str, action: str) -> None:
        self.failures.add((table, action))

    def check_failure(self, table: str, action: str) -> None:
        if (table, action) in self.failures:
            raise RuntimeError(f"{table}.{action} unavailable")

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            raise ValueError(f"Unexpected table {name}")
        return self.tables[name]

    @property
    def watermark_value(self) -> Optional[str]:
        for row in self.tables["sync_state"].rows:
            if row.get("key") == "booking_sync_watermark":
                return row.get("value")
        return None

    @property
    def processed_ids(self) -> List[str]:
        return [row["booking_id"] for row in self.tables["processed_bookings"].rows]

    @property
    def log_entries(self) -> List[Dict[str, object]]:
        return self.tables["sync_logs"].rows
