# freightdesk/shared/schemas/lifecycle.py
from enum import Enum


class RequestStatus(str, Enum):
    """Client/transporter-visible status of a transport request"""
    OPEN = "open"  # legacy rows created before qualification existed
    QUALIFICATION_PENDING = "qualification_pending"
    PUBLISHED_FOR_MATCHING = "published_for_matching"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


NON_TERMINAL_STATUSES = frozenset({
    RequestStatus.OPEN,
    RequestStatus.QUALIFICATION_PENDING,
    RequestStatus.PUBLISHED_FOR_MATCHING,
    RequestStatus.ACCEPTED,
    RequestStatus.IN_PROGRESS,
})


class CoordinationStatus(str, Enum):
    """Internal triage axis, independent from RequestStatus"""
    QUALIFICATION_PENDING = "qualification_pending"
    NOUVEAU = "nouveau"
    MATCHING = "matching"

    # En action
    CLIENT_INJOIGNABLE = "client_injoignable"
    INFOS_MANQUANTES = "infos_manquantes"
    PHOTOS_A_RECUPERER = "photos_a_recuperer"
    RAPPEL_PREVU = "rappel_prevu"
    ATTENTE_CONCURRENCE = "attente_concurrence"
    REFUS_TARIF = "refus_tarif"

    # Prioritaires
    LIVRAISON_URGENTE = "livraison_urgente"
    CLIENT_INTERESSE = "client_interesse"
    TRANSPORTEUR_INTERESSE = "transporteur_interesse"
    MENACE_ANNULATION = "menace_annulation"

    ARCHIVE = "archive"


# Written only by lifecycle transitions, never by a manual triage update
LIFECYCLE_COORDINATION_STATUSES = frozenset({
    CoordinationStatus.QUALIFICATION_PENDING,
    CoordinationStatus.MATCHING,
    CoordinationStatus.ARCHIVE,
})

EN_ACTION_STATUSES = frozenset({
    CoordinationStatus.CLIENT_INJOIGNABLE,
    CoordinationStatus.INFOS_MANQUANTES,
    CoordinationStatus.PHOTOS_A_RECUPERER,
    CoordinationStatus.RAPPEL_PREVU,
    CoordinationStatus.ATTENTE_CONCURRENCE,
    CoordinationStatus.REFUS_TARIF,
})

PRIORITY_STATUSES = frozenset({
    CoordinationStatus.LIVRAISON_URGENTE,
    CoordinationStatus.CLIENT_INTERESSE,
    CoordinationStatus.TRANSPORTEUR_INTERESSE,
    CoordinationStatus.MENACE_ANNULATION,
})


class TriageGroup(str, Enum):
    EN_ACTION = "en_action"
    PRIORITAIRE = "prioritaire"


TRIAGE_GROUPS = {
    TriageGroup.EN_ACTION: EN_ACTION_STATUSES,
    TriageGroup.PRIORITAIRE: PRIORITY_STATUSES,
}


class ArchiveReason(str, Enum):
    CLIENT_INJOIGNABLE = "client_injoignable"
    TRAITE_AILLEURS = "traite_ailleurs"
    BUDGET_INSUFFISANT = "budget_insuffisant"
    INFOS_INCOMPLETES = "infos_incompletes"
    NON_PRIORITAIRE = "non_prioritaire"
    NON_REALISABLE = "non_realisable"
    CLIENT_ANNULE = "client_annule"
    AUCUNE_OFFRE = "aucune_offre"
    PRIX_REFUSE = "prix_refuse"
    INJOIGNABLE_LONG_TERME = "injoignable_long_terme"
    A_REPRENDRE_PLUS_TARD = "a_reprendre_plus_tard"
    OFFRE_EXPIREE = "offre_expiree"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PENDING_ADMIN_VALIDATION = "pending_admin_validation"
    PAID = "paid"


PAYMENT_ORDER = [
    PaymentStatus.PENDING,
    PaymentStatus.AWAITING_PAYMENT,
    PaymentStatus.PENDING_ADMIN_VALIDATION,
    PaymentStatus.PAID,
]


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"


class LoadType(str, Enum):
    RETURN = "return"
    SHARED = "shared"


class InterestInvalidation(str, Enum):
    ASSIGNED_TO_OTHER = "assigned_to_other"
    OFFER_ACCEPTED = "offer_accepted"
    REQUALIFIED = "requalified"
    REPUBLISHED = "republished"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    CLIENT = "client"
    TRANSPORTER = "transporter"
    COORDINATOR = "coordinator"
    ADMIN = "admin"


class EventKind(str, Enum):
    CREATED = "created"
    QUALIFIED = "qualified"
    ASSIGNED = "assigned"
    OFFER_ACCEPTED = "offer_accepted"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"
    REPUBLISHED = "republished"
    REQUALIFIED = "requalified"
    PAYMENT_UPDATED = "payment_updated"
    COORDINATION_UPDATED = "coordination_updated"
    VISIBILITY_CHANGED = "visibility_changed"
    CLAIMED = "claimed"
    RELEASED = "released"
