"""
Delivery option management (admin back-office)
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from currency import to_decimal
from errors import NotFoundError, StorefrontError
from models import DeliveryOption, DeliverySettings

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "name", "description", "base_price", "price_per_km",
    "estimated_delivery_days", "is_express", "active",
)


class DeliveryOptionService:
    """CRUD over delivery options and the delivery settings row"""

    def __init__(self, db_session: Session):
        self.session = db_session

    def list_options(self, include_inactive: bool = False) -> List[DeliveryOption]:
        """Delivery options, standard before express, cheapest first"""
        query = self.session.query(DeliveryOption)
        if not include_inactive:
            query = query.filter(DeliveryOption.active == True)
        return query.order_by(DeliveryOption.is_express, DeliveryOption.base_price).all()

    def get_option(self, option_id: int) -> DeliveryOption:
        option = self.session.get(DeliveryOption, option_id)
        if option is None:
            raise NotFoundError(f"Delivery option {option_id} not found")
        return option

    def create_option(
        self,
        name: str,
        base_price,
        price_per_km=0,
        estimated_delivery_days: int = 2,
        is_express: bool = False,
        description: Optional[str] = None,
        active: bool = True
    ) -> DeliveryOption:
        if to_decimal(base_price) < 0 or to_decimal(price_per_km) < 0:
            raise StorefrontError("Delivery prices cannot be negative")

        option = DeliveryOption(
            name=name,
            description=description,
            base_price=to_decimal(base_price),
            price_per_km=to_decimal(price_per_km),
            estimated_delivery_days=estimated_delivery_days,
            is_express=is_express,
            active=active,
        )
        self.session.add(option)
        self.session.flush()

        logger.info(f"✓ Created delivery option '{name}' (id={option.id})")
        return option

    def update_option(self, option_id: int, **changes) -> DeliveryOption:
        option = self.get_option(option_id)

        for field_name, value in changes.items():
            if field_name not in EDITABLE_FIELDS:
                raise StorefrontError(f"Unknown delivery option field: {field_name}")
            if field_name in ("base_price", "price_per_km"):
                value = to_decimal(value)
            setattr(option, field_name, value)

        self.session.flush()
        logger.info(f"✓ Updated delivery option {option_id}: {sorted(changes)}")
        return option

    def delete_option(self, option_id: int) -> None:
        option = self.get_option(option_id)
        self.session.delete(option)
        self.session.flush()
        logger.info(f"✓ Deleted delivery option {option_id}")

    def get_settings(self) -> DeliverySettings:
        from delivery_calculation import get_delivery_settings

        return get_delivery_settings(self.session)

    def update_settings(
        self,
        free_delivery_threshold=None,
        warehouse_lat: Optional[float] = None,
        warehouse_lng: Optional[float] = None
    ) -> DeliverySettings:
        """Update the delivery settings row, creating it on first save"""
        settings = self.get_settings()
        if settings.id is None:
            self.session.add(settings)

        if free_delivery_threshold is not None:
            settings.free_delivery_threshold = to_decimal(free_delivery_threshold)
        if warehouse_lat is not None:
            settings.warehouse_lat = warehouse_lat
        if warehouse_lng is not None:
            settings.warehouse_lng = warehouse_lng

        self.session.flush()
        logger.info("✓ Delivery settings updated")
        return settings
