"""
SQLite persistence for orders, design files, mockups and proofs.

Rows are validated into the pydantic records from ``models`` on the way
out, so malformed data is rejected here rather than deep in the pipeline.
"""

import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from .exceptions import MalformedRecordError, NotFoundError
from .models import (
    Customer,
    DesignFile,
    GeneratedMockup,
    MockupBinding,
    Order,
    Proof,
    ProofStatus,
)

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/proofs.db")

RecordT = TypeVar("RecordT", bound=BaseModel)


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO format string."""
    return dt.isoformat() if dt else None


def _validate(model: Type[RecordT], data: Dict[str, Any]) -> RecordT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedRecordError(f"Malformed {model.__name__} record: {exc}") from exc


class ProofDatabase:
    """
    SQLite store shared by the API process and the worker threads.

    Thread-safe: every operation opens its own connection and SQLite
    handles concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS customers (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT,
                    phone TEXT,
                    company TEXT
                );

                CREATE TABLE IF NOT EXISTS orders (
                    id TEXT PRIMARY KEY,
                    order_number TEXT,
                    customer_id TEXT REFERENCES customers(id),
                    products TEXT NOT NULL DEFAULT '[]',
                    needs_digitizing INTEGER NOT NULL DEFAULT 0,
                    designed_by_66 INTEGER NOT NULL DEFAULT 0,
                    mockup_ids TEXT NOT NULL DEFAULT '[]',
                    notes TEXT
                );

                CREATE TABLE IF NOT EXISTS design_files (
                    id TEXT PRIMARY KEY,
                    order_id TEXT NOT NULL REFERENCES orders(id),
                    storage_path TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    placement TEXT NOT NULL DEFAULT 'front',
                    position INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS product_mockup_bindings (
                    sku TEXT PRIMARY KEY,
                    mockup_uuid TEXT,
                    smart_object_uuid TEXT
                );

                CREATE TABLE IF NOT EXISTS generated_mockups (
                    id TEXT PRIMARY KEY,
                    storage_path TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    mockup_uuid TEXT NOT NULL,
                    smart_object_uuid TEXT NOT NULL,
                    mockup_name TEXT,
                    created_by TEXT NOT NULL,
                    design_file_id TEXT,
                    order_id TEXT,
                    customer_id TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS proofs (
                    id TEXT PRIMARY KEY,
                    order_id TEXT NOT NULL REFERENCES orders(id),
                    version INTEGER NOT NULL,
                    pdf_path TEXT NOT NULL,
                    pdf_signed_url TEXT,
                    status TEXT NOT NULL,
                    approval_token TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    approved_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_design_files_order
                ON design_files(order_id, position);

                CREATE INDEX IF NOT EXISTS idx_proofs_order
                ON proofs(order_id, created_at DESC);
            """)

    # ------------------------------------------------------------------
    # Writes used to seed orders (the storefront owns these in production)
    # ------------------------------------------------------------------

    def save_customer(self, customer: Customer) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO customers (id, name, email, phone, company) VALUES (?, ?, ?, ?, ?)",
                (customer.id, customer.name, customer.email, customer.phone, customer.company),
            )

    def save_order(self, order: Order) -> None:
        """
        Save an order together with its customer and design files.

        Args:
            order: Order with nested customer and design files
        """
        if order.customer is not None:
            self.save_customer(order.customer)

        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO orders (
                    id, order_number, customer_id, products,
                    needs_digitizing, designed_by_66, mockup_ids, notes
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                order.id,
                order.order_number,
                order.customer.id if order.customer else None,
                json.dumps([item.model_dump() for item in order.products]),
                int(order.needs_digitizing),
                int(order.designed_by_66),
                json.dumps(order.mockup_ids),
                order.notes,
            ))
            for position, design_file in enumerate(order.design_files):
                conn.execute("""
                    INSERT OR REPLACE INTO design_files (
                        id, order_id, storage_path, filename, mime_type, placement, position
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    design_file.id,
                    order.id,
                    design_file.storage_path,
                    design_file.filename,
                    design_file.mime_type,
                    design_file.placement,
                    position,
                ))

    def save_binding(self, binding: MockupBinding) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO product_mockup_bindings (sku, mockup_uuid, smart_object_uuid) VALUES (?, ?, ?)",
                (binding.sku, binding.mockup_uuid, binding.smart_object_uuid),
            )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        """
        Fetch an order with its customer and design files joined.

        Raises:
            NotFoundError: If the order does not exist
            MalformedRecordError: If any joined row fails validation
        """
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
            if not row:
                raise NotFoundError("Order", order_id)

            customer_row = None
            if row["customer_id"]:
                customer_row = conn.execute(
                    "SELECT * FROM customers WHERE id = ?", (row["customer_id"],)
                ).fetchone()

            file_rows = conn.execute(
                "SELECT * FROM design_files WHERE order_id = ? ORDER BY position, id", (order_id,)
            ).fetchall()

        try:
            products = json.loads(row["products"] or "[]")
            mockup_ids = json.loads(row["mockup_ids"] or "[]")
        except json.JSONDecodeError as exc:
            raise MalformedRecordError(f"Malformed Order record {order_id}: {exc}") from exc

        return _validate(Order, {
            "id": row["id"],
            "order_number": row["order_number"],
            "customer": dict(customer_row) if customer_row else None,
            "products": products,
            "design_files": [self._design_file_dict(r) for r in file_rows],
            "needs_digitizing": bool(row["needs_digitizing"]),
            "designed_by_66": bool(row["designed_by_66"]),
            "mockup_ids": mockup_ids,
            "notes": row["notes"],
        })

    def get_design_file(self, design_file_id: str) -> DesignFile:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM design_files WHERE id = ?", (design_file_id,)).fetchone()
        if not row:
            raise NotFoundError("Design file", design_file_id)
        return _validate(DesignFile, self._design_file_dict(row))

    def get_mockup_binding(self, sku: str) -> Optional[MockupBinding]:
        """
        Look up the template/slot bound to a product SKU.

        Returns:
            The binding when both ids are present, otherwise None
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT sku, mockup_uuid, smart_object_uuid FROM product_mockup_bindings WHERE sku = ?",
                (sku,),
            ).fetchone()
        if not row or not row["mockup_uuid"] or not row["smart_object_uuid"]:
            return None
        return _validate(MockupBinding, dict(row))

    def get_generated_mockups(self, mockup_ids: Iterable[str]) -> List[GeneratedMockup]:
        """Load generated mockups, keeping the order of ``mockup_ids``. Unknown ids are skipped."""
        ids = list(dict.fromkeys(mockup_ids))
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM generated_mockups WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {row["id"]: row for row in rows}
        return [_validate(GeneratedMockup, dict(by_id[i])) for i in ids if i in by_id]

    def find_generated_mockup(self, storage_path: str, design_file_id: Optional[str]) -> Optional[GeneratedMockup]:
        """Return the mockup already recorded for this object and design file, if any."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM generated_mockups WHERE storage_path = ? AND design_file_id IS ? "
                "ORDER BY created_at LIMIT 1",
                (storage_path, design_file_id),
            ).fetchone()
        return _validate(GeneratedMockup, dict(row)) if row else None

    def insert_generated_mockup(
        self,
        *,
        storage_path: str,
        filename: str,
        mime_type: str,
        file_size: int,
        mockup_uuid: str,
        smart_object_uuid: str,
        created_by: str,
        mockup_name: Optional[str] = None,
        design_file_id: Optional[str] = None,
        order_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> GeneratedMockup:
        """
        Insert a generated mockup record.

        The caller must have uploaded ``storage_path`` already.
        """
        record = GeneratedMockup(
            id=uuid4().hex,
            storage_path=storage_path,
            filename=filename,
            mime_type=mime_type,
            file_size=file_size,
            mockup_uuid=mockup_uuid,
            smart_object_uuid=smart_object_uuid,
            mockup_name=mockup_name,
            created_by=created_by,
            design_file_id=design_file_id,
            order_id=order_id,
            customer_id=customer_id,
            created_at=datetime.utcnow(),
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO generated_mockups (
                    id, storage_path, filename, mime_type, file_size,
                    mockup_uuid, smart_object_uuid, mockup_name, created_by,
                    design_file_id, order_id, customer_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.storage_path,
                record.filename,
                record.mime_type,
                record.file_size,
                record.mockup_uuid,
                record.smart_object_uuid,
                record.mockup_name,
                record.created_by,
                record.design_file_id,
                record.order_id,
                record.customer_id,
                _serialize_datetime(record.created_at),
            ))
        return record

    # ------------------------------------------------------------------
    # Proofs
    # ------------------------------------------------------------------

    def insert_proof(
        self,
        order_id: str,
        version: int,
        pdf_path: str,
        pdf_signed_url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Proof:
        """
        Insert a ready proof with a fresh approval token.

        No uniqueness is enforced on (order_id, version): re-running a
        version adds another row.
        """
        proof = Proof(
            id=uuid4().hex,
            order_id=order_id,
            version=version,
            pdf_path=pdf_path,
            pdf_signed_url=pdf_signed_url,
            status=ProofStatus.READY,
            approval_token=secrets.token_urlsafe(24),
            notes=notes,
            created_at=datetime.utcnow(),
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO proofs (
                    id, order_id, version, pdf_path, pdf_signed_url,
                    status, approval_token, notes, created_at, approved_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                proof.id,
                proof.order_id,
                proof.version,
                proof.pdf_path,
                proof.pdf_signed_url,
                proof.status.value,
                proof.approval_token,
                proof.notes,
                _serialize_datetime(proof.created_at),
                None,
            ))
        logger.info(f"Proof record created: {proof.id} ({order_id} v{version})")
        return proof

    def get_proof(self, proof_id: str) -> Proof:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM proofs WHERE id = ?", (proof_id,)).fetchone()
        if not row:
            raise NotFoundError("Proof", proof_id)
        return _validate(Proof, dict(row))

    def get_proof_with_token(self, proof_id: str, token: str) -> Proof:
        """Fetch a proof only when ``token`` matches its approval token."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM proofs WHERE id = ? AND approval_token = ?", (proof_id, token)
            ).fetchone()
        if not row:
            raise NotFoundError("Proof", proof_id)
        return _validate(Proof, dict(row))

    def list_proofs(self, order_id: Optional[str] = None) -> List[Proof]:
        """
        List proofs, newest first.

        Args:
            order_id: Restrict to one order when given
        """
        with self._get_connection() as conn:
            if order_id is None:
                rows = conn.execute("SELECT * FROM proofs ORDER BY created_at DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM proofs WHERE order_id = ? ORDER BY created_at DESC", (order_id,)
                ).fetchall()
        return [_validate(Proof, dict(row)) for row in rows]

    def approve_proof(self, proof_id: str, token: str) -> Proof:
        """
        Mark a proof approved.

        Raises:
            NotFoundError: If no proof matches both id and token
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE proofs SET status = ?, approved_at = ? WHERE id = ? AND approval_token = ?",
                (ProofStatus.APPROVED.value, _serialize_datetime(datetime.utcnow()), proof_id, token),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Proof", proof_id)
        return self.get_proof(proof_id)

    def _design_file_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        return {
            "id": row["id"],
            "order_id": row["order_id"],
            "storage_path": row["storage_path"],
            "filename": row["filename"],
            "mime_type": row["mime_type"],
            "placement": row["placement"],
        }
