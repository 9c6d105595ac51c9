from dataclasses import dataclass
from typing import Dict, Tuple

from .envelope import ModelSpec


@dataclass(frozen=True)
class EntityModel:
    """Declarative description of one entity type.

    ``path`` is the URL segment the generic router is mounted on and
    ``filter_fields`` are the entity fields the list endpoint accepts as
    equality filters.
    """

    name: str
    version: int
    business_key: str
    path: str
    filter_fields: Tuple[str, ...] = ()

    @property
    def spec(self) -> ModelSpec:
        return ModelSpec(name=self.name, version=self.version)

    @property
    def label(self) -> str:
        return self.name.lower()


ACCRUAL = EntityModel("Accrual", 1, "accrualId", "accrual", ("loanId", "asOfDate", "runId"))
INVESTIGATOR = EntityModel("Investigator", 1, "investigatorId", "investigator", ("specialty", "licenseState"))
PAYMENT = EntityModel("Payment", 1, "paymentId", "payment", ("loanId", "payerPartyId", "status"))
PROTOCOL = EntityModel("Protocol", 1, "protocolId", "protocol", ("studyId", "phase"))
SHIPMENT = EntityModel("Shipment", 1, "shipmentId", "shipment", ("orderId", "status"))
SITE = EntityModel("Site", 1, "siteId", "site", ("country", "siteType"))
STUDY = EntityModel("Study", 1, "studyId", "study", ("phase", "studyType"))

# Read by the dashboard aggregation only; no router is mounted for it.
LOAN = EntityModel("Loan", 1, "loanId", "loan", ("partyId",))

ENTITY_MODELS: Tuple[EntityModel, ...] = (
    ACCRUAL,
    INVESTIGATOR,
    PAYMENT,
    PROTOCOL,
    SHIPMENT,
    SITE,
    STUDY,
)

MODELS_BY_NAME: Dict[str, EntityModel] = {model.name: model for model in ENTITY_MODELS + (LOAN,)}
