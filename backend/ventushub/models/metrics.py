from datetime import date

from sqlalchemy import Date, Float, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from ventushub.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class MetricsPartition(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "notification_metrics"

    date_partition: Mapped[date] = mapped_column(Date, nullable=False, unique=True)

    total_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_delivered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_opened: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_clicked: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_bounced: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # {"property": {"sent": 3, "delivered": 2, ...}, ...}
    category_metrics: Mapped[dict] = mapped_column(JSONType, default=dict)
    channel_metrics: Mapped[dict] = mapped_column(JSONType, default=dict)

    active_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_time_to_read_seconds: Mapped[float | None] = mapped_column(Float)
    avg_delivery_time_seconds: Mapped[float | None] = mapped_column(Float)

    # Percentages, two decimals
    bounce_rate: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), default=0.0, nullable=False)
    click_through_rate: Mapped[float] = mapped_column(Numeric(5, 2, asdecimal=False), default=0.0, nullable=False)
