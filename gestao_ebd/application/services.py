from __future__ import annotations

from dataclasses import dataclass

from flask import Flask, current_app

from gestao_ebd.application.commission_service import CommissionService
from gestao_ebd.application.onboarding_service import OnboardingService
from gestao_ebd.application.proposal_service import ProposalService
from gestao_ebd.application.shipping_service import ShippingResolver
from gestao_ebd.changefeed import ChangeFeed
from gestao_ebd.infrastructure.repositories.onboarding_repository import (
    ChurchActivityRepository,
    OnboardingRepository,
)
from gestao_ebd.infrastructure.repositories.order_repository import OrderRepository
from gestao_ebd.infrastructure.repositories.parcela_repository import ParcelaRepository
from gestao_ebd.infrastructure.repositories.party_repository import (
    CategoryDiscountRepository,
    ChurchRepository,
    SellerRepository,
)
from gestao_ebd.infrastructure.repositories.proposal_repository import ProposalRepository
from gestao_ebd.integrations import build_remote_procedures
from gestao_ebd.integrations.gateway import RemoteProcedures


EXTENSION_KEY = "gestao_ebd"


@dataclass
class ServiceRegistry:
    change_feed: ChangeFeed
    remote: RemoteProcedures
    shipping: ShippingResolver
    proposals: ProposalService
    commissions: CommissionService
    onboarding: OnboardingService
    churches: ChurchRepository
    sellers: SellerRepository
    category_discounts: CategoryDiscountRepository


def build_services(config, *, remote: RemoteProcedures | None = None, change_feed: ChangeFeed | None = None) -> ServiceRegistry:
    change_feed = change_feed or ChangeFeed()
    remote = remote or build_remote_procedures(config)

    proposals_repo = ProposalRepository(change_feed=change_feed)
    orders = OrderRepository(change_feed=change_feed)
    parcelas = ParcelaRepository(change_feed=change_feed)
    churches = ChurchRepository(change_feed=change_feed)
    sellers = SellerRepository(change_feed=change_feed)
    category_discounts = CategoryDiscountRepository(change_feed=change_feed)

    shipping = ShippingResolver.from_config(config, remote)
    commissions = CommissionService(
        orders=orders,
        parcelas=parcelas,
        sellers=sellers,
        churches=churches,
        default_percent=config.get("DEFAULT_COMMISSION_PERCENT", 5.0),
        invoiced_default_percent=config.get("INVOICED_DEFAULT_COMMISSION_PERCENT", 1.5),
    )
    proposals = ProposalService(
        proposals=proposals_repo,
        orders=orders,
        churches=churches,
        sellers=sellers,
        category_discounts=category_discounts,
        shipping=shipping,
        commissions=commissions,
        remote=remote,
        public_base_url=config.get("PUBLIC_BASE_URL", "https://gestaoebd.com.br"),
    )
    onboarding = OnboardingService(
        onboarding=OnboardingRepository(change_feed=change_feed),
        activity=ChurchActivityRepository(change_feed=change_feed),
        churches=churches,
        orders=orders,
        change_feed=change_feed,
    )
    return ServiceRegistry(
        change_feed=change_feed,
        remote=remote,
        shipping=shipping,
        proposals=proposals,
        commissions=commissions,
        onboarding=onboarding,
        churches=churches,
        sellers=sellers,
        category_discounts=category_discounts,
    )


def register_services(app: Flask, registry: ServiceRegistry | None = None) -> ServiceRegistry:
    registry = registry or build_services(app.config)
    app.extensions[EXTENSION_KEY] = registry
    return registry


def services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]
