"""Default templates and triggers for the platform's main flows.

Seeding is idempotent: existing rows, including operator edits to them, are
never overwritten.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ventushub.core.timeutil import utcnow
from ventushub.db.upsert import insert_or_skip
from ventushub.models.template import NotificationTemplate, NotificationTrigger
from ventushub.schemas.enums import EntityType, EventType

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES = [
    {
        "template_key": "property_stage_advanced",
        "name": "Propriedade Avançou de Etapa",
        "title_template": "🏠 Propriedade {{propertyAddress}} avançou para {{newStageName}}",
        "message_template": (
            "A propriedade {{propertyAddress}} foi promovida para a etapa \"{{newStageName}}\". "
            "Continue acompanhando o progresso."
        ),
        "default_type": "success",
        "default_severity": "normal",
        "default_category": "property",
        "default_channels": ["in_app", "email"],
    },
    {
        "template_key": "property_created",
        "name": "Nova Propriedade Cadastrada",
        "title_template": "🏠 Nova propriedade cadastrada",
        "message_template": "A propriedade {{propertyAddress}} foi cadastrada com sucesso no sistema.",
        "default_type": "success",
        "default_severity": "low",
        "default_category": "property",
        "default_channels": ["in_app"],
    },
    {
        "template_key": "property_pendency_created",
        "name": "Nova Pendência Criada",
        "title_template": "⚠️ Nova pendência: {{pendencyTitle}}",
        "message_template": (
            "Uma nova pendência foi identificada para a propriedade {{propertyAddress}}: {{pendencyTitle}}."
        ),
        "default_type": "warning",
        "default_severity": "high",
        "default_category": "pendency",
        "default_channels": ["in_app", "email", "push"],
    },
    {
        "template_key": "document_uploaded",
        "name": "Documento Enviado",
        "title_template": "📄 Documento enviado: {{documentName}}",
        "message_template": "O documento \"{{documentName}}\" foi enviado para a propriedade {{propertyAddress}}.",
        "default_type": "info",
        "default_severity": "normal",
        "default_category": "document",
        "default_channels": ["in_app"],
    },
    {
        "template_key": "client_note_reminder",
        "name": "Lembrete de Cliente",
        "title_template": "⏰ Lembrete: {{noteTitle}}",
        "message_template": "Lembrete agendado para o cliente {{clientName}}: {{noteTitle}} ({{reminderDate}}).",
        "default_type": "reminder",
        "default_severity": "high",
        "default_category": "client",
        "default_channels": ["in_app", "push"],
    },
    {
        "template_key": "proposal_received",
        "name": "Proposta Recebida",
        "title_template": "💼 Nova proposta para {{propertyAddress}}",
        "message_template": "Uma nova proposta foi recebida para a propriedade {{propertyAddress}}.",
        "default_type": "info",
        "default_severity": "high",
        "default_category": "contract",
        "default_channels": ["in_app", "email"],
    },
    {
        "template_key": "contract_signed",
        "name": "Contrato Assinado",
        "title_template": "✍️ Contrato assinado para {{propertyAddress}}",
        "message_template": (
            "O contrato foi assinado com sucesso por {{buyerName}} para a propriedade {{propertyAddress}}. Parabéns!"
        ),
        "default_type": "success",
        "default_severity": "high",
        "default_category": "contract",
        "default_channels": ["in_app", "email"],
    },
]

DEFAULT_TRIGGERS = [
    {
        "trigger_key": "property_stage_advanced_rule",
        "name": "Notificar Avanço de Etapa",
        "event_type": EventType.STAGE_ADVANCED.value,
        "entity_type": EntityType.PROPERTY.value,
        "template_key": "property_stage_advanced",
        "override_settings": {"action_url": "/property/{{entityId}}"},
        "priority": 10,
    },
    {
        "trigger_key": "property_created_rule",
        "name": "Notificar Nova Propriedade",
        "event_type": EventType.PROPERTY_CREATED.value,
        "entity_type": EntityType.PROPERTY.value,
        "template_key": "property_created",
        "override_settings": {"action_url": "/property/{{entityId}}"},
    },
    {
        "trigger_key": "pendency_created_rule",
        "name": "Notificar Nova Pendência",
        "event_type": EventType.PENDENCY_CREATED.value,
        "entity_type": EntityType.PROPERTY.value,
        "template_key": "property_pendency_created",
        "override_settings": {"action_url": "/property/{{entityId}}"},
        # At most one per property per hour
        "frequency_limit": {"max_count": 1, "window_hours": 1, "scope": "entity"},
        "priority": 20,
    },
    {
        "trigger_key": "document_uploaded_rule",
        "name": "Notificar Documento Enviado",
        "event_type": EventType.DOCUMENT_UPLOADED.value,
        "entity_type": EntityType.PROPERTY.value,
        "template_key": "document_uploaded",
        "override_settings": {"action_url": "/property/{{entityId}}"},
    },
    {
        "trigger_key": "client_reminder_rule",
        "name": "Notificar Lembrete de Cliente",
        "event_type": EventType.CLIENT_REMINDER_DUE.value,
        "entity_type": EntityType.CLIENT.value,
        "template_key": "client_note_reminder",
        "override_settings": {"action_url": "/clients/{{entityId}}"},
        "priority": 15,
    },
    {
        "trigger_key": "proposal_received_rule",
        "name": "Notificar Proposta Recebida",
        "event_type": EventType.PROPOSAL_RECEIVED.value,
        "entity_type": EntityType.PROPOSAL.value,
        "template_key": "proposal_received",
        "priority": 15,
    },
    {
        "trigger_key": "contract_signed_rule",
        "name": "Notificar Contrato Assinado",
        "event_type": EventType.CONTRACT_SIGNED.value,
        "entity_type": EntityType.CONTRACT.value,
        "template_key": "contract_signed",
        "priority": 10,
    },
]


async def seed_defaults(session: AsyncSession, clock=utcnow) -> dict:
    """Insert missing default templates and triggers. Returns how many of each were added."""
    now = clock()
    added = {"templates": 0, "triggers": 0}

    for template in DEFAULT_TEMPLATES:
        values = {
            **template,
            "locale": "pt-BR",
            "version": 1,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        if await insert_or_skip(session, NotificationTemplate, values, ["template_key"]) is not None:
            added["templates"] += 1

    template_ids = dict((await session.execute(
        select(NotificationTemplate.template_key, NotificationTemplate.id)
    )).all())

    for trigger in DEFAULT_TRIGGERS:
        fields = dict(trigger)
        template_id = template_ids.get(fields.pop("template_key"))
        if template_id is None:
            logger.warning(f"Skipping default trigger '{fields['trigger_key']}': template missing")
            continue
        values = {
            "delay_minutes": 0,
            "priority": 0,
            "is_active": True,
            **fields,
            "template_id": template_id,
            "created_at": now,
            "updated_at": now,
        }
        if await insert_or_skip(session, NotificationTrigger, values, ["trigger_key"]) is not None:
            added["triggers"] += 1

    await session.flush()
    logger.info(f"Seeded {added['templates']} template(s) and {added['triggers']} trigger(s)")
    return added
