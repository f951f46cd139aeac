# leads/routing.py
from django.db import transaction
from django.db.models import Count, Q

from core.logger_service import get_logger
from core.models import CustomUser
from .models import Enquiry, Lead

logger = get_logger('routing')

ROUND_ROBIN = 'ROUND_ROBIN'
TERRITORY = 'TERRITORY'
CAPACITY = 'CAPACITY'
STRATEGIES = (ROUND_ROBIN, TERRITORY, CAPACITY)

OPEN_ENQUIRY_STATUSES = (Enquiry.Status.NEW, Enquiry.Status.ASSIGNED, Enquiry.Status.CONTACTED)


def eligible_agents():
    return (
        CustomUser.objects.filter(
            role__in=[CustomUser.Role.SALES_AGENT, CustomUser.Role.SALES_MANAGER],
            is_active=True,
        )
        .annotate(
            open_leads=Count(
                'owned_leads',
                filter=~Q(owned_leads__stage__in=Lead.TERMINAL_STAGES),
                distinct=True,
            ),
            open_enquiries=Count(
                'enquiries',
                filter=Q(enquiries__status__in=OPEN_ENQUIRY_STATUSES),
                distinct=True,
            ),
        )
        .order_by('id')
    )


def _round_robin(agents):
    last_agent_id = (
        Enquiry.objects.filter(assigned_agent__isnull=False)
        .order_by('-updated_at', '-id')
        .values_list('assigned_agent_id', flat=True)
        .first()
    )
    ids = [agent.pk for agent in agents]
    last_index = ids.index(last_agent_id) if last_agent_id in ids else -1
    return ids[(last_index + 1) % len(ids)]


def next_agent(strategy=ROUND_ROBIN, country=None):
    """
    Pick the agent who should receive the next enquiry.

    ROUND_ROBIN follows the most recently assigned enquiry, TERRITORY matches
    the enquiry country against the agent's office and falls back to round
    robin, CAPACITY picks the agent with the fewest open leads and enquiries.
    Returns None when nobody is eligible.
    """
    agents = list(eligible_agents())
    if not agents:
        return None

    if strategy == TERRITORY:
        if country:
            country_lower = country.strip().lower()
            for agent in agents:
                if agent.office and country_lower in agent.office.lower():
                    return agent.pk
        return _round_robin(agents)

    if strategy == CAPACITY:
        return min(agents, key=lambda a: a.open_leads + a.open_enquiries).pk

    if strategy == ROUND_ROBIN:
        return _round_robin(agents)

    return agents[0].pk


def auto_assign_enquiry(enquiry, strategy=CAPACITY):
    """Route a fresh, unowned enquiry to an agent. Routing problems never reach the caller."""
    try:
        with transaction.atomic():
            agent_id = next_agent(strategy, enquiry.country)
            if agent_id is None:
                logger.info(f"No eligible agent for enquiry {enquiry.pk}")
                return None
            rows = Enquiry.objects.filter(
                pk=enquiry.pk,
                status=Enquiry.Status.NEW,
                assigned_agent__isnull=True,
                pool__isnull=True,
            ).update(assigned_agent_id=agent_id, status=Enquiry.Status.ASSIGNED)
    except Exception as e:
        logger.error(f"Auto-assignment failed for enquiry {enquiry.pk}: {str(e)}", exc_info=True)
        return None

    if rows == 0:
        return None
    logger.info(f"Enquiry {enquiry.pk} auto-assigned to agent {agent_id} ({strategy})")
    return agent_id
