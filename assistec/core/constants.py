from enum import Enum


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    AWAITING_ANALYSIS = "AWAITING_ANALYSIS"
    IN_ANALYSIS = "IN_ANALYSIS"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    PAID = "PAID"
    AWAITING_PICKUP = "AWAITING_PICKUP"
    PICKED_UP = "PICKED_UP"
    CANCELLED = "CANCELLED"


ORDER_STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.DRAFT: "Rascunho",
    OrderStatus.AWAITING_ANALYSIS: "Aguardando Analise",
    OrderStatus.IN_ANALYSIS: "Em Analise",
    OrderStatus.AWAITING_APPROVAL: "Aguardando Aprovacao",
    OrderStatus.APPROVED: "Aprovado pelo Cliente",
    OrderStatus.REJECTED: "Recusado pelo Cliente",
    OrderStatus.IN_PROGRESS: "Em Execucao",
    OrderStatus.DONE: "Servico Concluido",
    OrderStatus.AWAITING_PAYMENT: "Aguardando Pagamento",
    OrderStatus.PAID: "Pago / Pronto para Saida",
    OrderStatus.AWAITING_PICKUP: "Aguardando Retirada",
    OrderStatus.PICKED_UP: "Finalizado e Retirado",
    OrderStatus.CANCELLED: "Cancelado",
}


class EvidenceStage(str, Enum):
    ENTRADA = "ENTRADA"
    DIAGNOSTICO = "DIAGNOSTICO"
    PROCESSO = "PROCESSO"
    FINALIZACAO = "FINALIZACAO"
    ENTREGA = "ENTREGA"
    APROVACAO_DOCUMENTAL = "APROVACAO_DOCUMENTAL"


EVIDENCE_LABELS: dict[EvidenceStage, str] = {
    EvidenceStage.ENTRADA: "Foto de Entrada/Vistoria",
    EvidenceStage.DIAGNOSTICO: "Foto do Diagnostico",
    EvidenceStage.PROCESSO: "Foto do Processo",
    EvidenceStage.FINALIZACAO: "Foto da Finalizacao",
    EvidenceStage.ENTREGA: "Comprovante de Entrega",
    EvidenceStage.APROVACAO_DOCUMENTAL: "Termo de Aprovacao Assinado",
}


class EvidenceLifecycle(str, Enum):
    ACTIVE = "ACTIVE"
    RETIRED = "RETIRED"
    PURGE_ELIGIBLE = "PURGE_ELIGIBLE"


class ItemSeverity(str, Enum):
    CRITICAL = "critical"
    RECOMMENDED = "recommended"


class ApprovalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class ApprovalMethod(str, Enum):
    REMOTO = "REMOTO"
    PRESENCIAL = "PRESENCIAL"
    PRESENCIAL_DOCUMENTO = "PRESENCIAL_DOCUMENTO"


class SignatureKind(str, Enum):
    DRAWN = "DRAWN"
    PHYSICAL_DOCUMENT = "PHYSICAL_DOCUMENT"


class PaymentMethod(str, Enum):
    PIX = "PIX"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    OTHER = "OTHER"


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    FUNCIONARIO = "FUNCIONARIO"
    TECHNICIAN = "TECHNICIAN"


# BALCAO: front desk (items, approvals, payments, withdrawal). BANCADA: bench (analysis, evidence).
FUNCTIONS = {"BALCAO", "BANCADA"}

PRIVILEGED_ROLES = {Role.SUPER_ADMIN.value, Role.ADMIN.value}
