"""Guidance shown when an agent changes a ticket's priority.

Suggestions and placeholders are keyed by the transition, e.g. "medium-critical".
"""

from .ticket_rules import PRIORITIES

PRIORITY_SUGGESTIONS: dict[str, list[str]] = {
    # Raising to critical
    "medium-critical": [
        "Sistema completamente indisponível, afetando todos os usuários",
        "Perda significativa de dados em produção",
        "Falha de segurança crítica identificada",
        "Processo crítico do negócio totalmente parado",
        "Impacto financeiro grave imediato",
    ],
    "high-critical": [
        "Problema escalou para indisponibilidade total do sistema",
        "Identificado risco iminente de perda de dados",
        "Falha de segurança com exploração ativa",
        "Serviço principal totalmente interrompido",
        "Impacto direto na operação da empresa",
    ],
    # Raising to high
    "low-high": [
        "Múltiplos departamentos afetados simultaneamente",
        "Funcionalidade crítica com falha grave",
        "Grande número de usuários impactados",
        "Erro em processo essencial do negócio",
        "Risco significativo identificado",
    ],
    "medium-high": [
        "Problema afetando mais usuários que o previsto",
        "Identificado impacto maior no processo",
        "Funcionalidade importante comprometida",
        "Erro afetando setor crítico",
        "Necessidade de resolução mais urgente",
    ],
    # Raising to medium
    "low-medium": [
        "Impacto maior que o inicialmente avaliado",
        "Mais usuários afetados que o previsto",
        "Processo importante parcialmente comprometido",
        "Necessidade de atenção aumentou",
        "Risco de escalação identificado",
    ],
    # Lowering to low
    "critical-low": [
        "Problema contornado com solução alternativa",
        "Impacto real menor que o reportado",
        "Afeta apenas processos não críticos",
        "Poucos usuários impactados",
        "Baixo risco para a operação",
    ],
    "high-low": [
        "Situação normalizada com workaround",
        "Impacto reduzido após análise",
        "Processo não é crítico como avaliado",
        "Número limitado de usuários afetados",
        "Baixa criticidade confirmada",
    ],
    "medium-low": [
        "Problema menos crítico que o estimado",
        "Impacto mínimo nas operações",
        "Alternativa viável disponível",
        "Poucos usuários afetados",
        "Pode ser tratado posteriormente",
    ],
    # Lowering to medium
    "critical-medium": [
        "Situação parcialmente contornada",
        "Impacto menor que o inicialmente reportado",
        "Sistema funcionando com limitações",
        "Processo tem alternativas viáveis",
        "Criticidade reavaliada após análise",
    ],
    "high-medium": [
        "Problema não tão crítico quanto avaliado",
        "Impacto moderado após análise",
        "Existem soluções de contorno",
        "Processo afetado tem alternativas",
        "Urgência reduzida após verificação",
    ],
    # Lowering to high
    "critical-high": [
        "Sistema parcialmente recuperado",
        "Impacto reduzido mas ainda significativo",
        "Principais funções restauradas",
        "Processo crítico parcialmente operacional",
        "Situação mais estável após ações iniciais",
    ],
}

INCREASE_KEYWORDS = [
    "crítico",
    "urgente",
    "grave",
    "interrupção",
    "impacto maior",
    "impacto alto",
    "impacto crítico",
    "afetando todos",
    "sistema parado",
    "bloqueado",
    "indisponível",
    "sem acesso",
    "perda de dados",
    "falha total",
    "emergência",
]

DECREASE_KEYWORDS = [
    "menor impacto",
    "impacto reduzido",
    "não é crítico",
    "baixa criticidade",
    "pode aguardar",
    "sem urgência",
    "normalizado",
    "estável",
    "contornado",
    "mínimo",
    "resolvido parcialmente",
    "alternativa disponível",
    "poucos usuários",
    "impacto limitado",
]

INCREASE_PLACEHOLDERS = {
    "critical": "O problema está causando interrupção total dos serviços críticos. Usuários sem acesso ao sistema, impactando diretamente a operação da empresa...",
    "high": "O problema está afetando processos críticos e um grande número de usuários. Funcionalidades importantes comprometidas...",
    "medium": "O problema apresenta impacto moderado nas operações. Alguns usuários afetados, mas existem alternativas temporárias...",
    "low": "O problema requer atenção, mas tem baixo impacto nas operações. Poucos usuários afetados...",
}

DECREASE_PLACEHOLDERS = {
    "low": "Após análise, verificamos que o impacto é mínimo. O problema afeta poucos usuários e existem alternativas viáveis...",
    "medium": "Após reavaliação, o problema não apresenta a criticidade inicialmente estimada. Impacto menor que o previsto...",
    "high": "O impacto foi reavaliado e, embora importante, não representa uma interrupção total como considerado inicialmente...",
    "critical": "Mesmo sendo um problema sério, não está causando a interrupção total inicialmente reportada...",
}


def priority_level(priority: str) -> int:
    """1 for low up to 4 for critical."""
    return PRIORITIES.index(priority) + 1


def is_priority_increase(current: str, new: str) -> bool:
    return priority_level(new) > priority_level(current)


def get_placeholder_text(current: str, new: str) -> str:
    if is_priority_increase(current, new):
        return INCREASE_PLACEHOLDERS[new]
    return DECREASE_PLACEHOLDERS[new]


def get_priority_suggestions(current: str, new: str) -> list[str]:
    return PRIORITY_SUGGESTIONS.get(f"{current}-{new}", [])


def classify_reason(reason: str) -> str:
    """Guess whether a justification argues for raising or lowering priority.

    Returns "increase", "decrease" or "neutral".
    """
    text = reason.lower()
    up = sum(1 for kw in INCREASE_KEYWORDS if kw in text)
    down = sum(1 for kw in DECREASE_KEYWORDS if kw in text)
    if up > down:
        return "increase"
    if down > up:
        return "decrease"
    return "neutral"
