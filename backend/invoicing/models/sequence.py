from sqlalchemy import Integer, PrimaryKeyConstraint, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from invoicing.models.base import Base


class InvoiceSequence(Base):
    """
    One gapless counter per (organization, calendar year).

    Rows are created lazily by the numbering service and never deleted;
    past years stay behind as the audit trail of issued volume.
    """

    __tablename__ = "invoice_sequence"
    __table_args__ = (
        PrimaryKeyConstraint("organization_id", "year", name="pk_invoice_sequence"),
    )

    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    year: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)
    last_issued: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"InvoiceSequence(organization_id={self.organization_id!r}, "
            f"year={self.year}, last_issued={self.last_issued})"
        )
