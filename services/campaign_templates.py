"""
Campaign template registry
Goal-specific defaults used to sanity-check campaign specs before launch
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CampaignTemplate:
    id: str
    name: str
    goal: str
    channels: List[str]
    segments: List[str] = field(default_factory=list)
    tone_guidelines: str = ''
    metric_targets: Dict[str, float] = field(default_factory=dict)

    def unsupported_channels(self, channels: List[str]) -> List[str]:
        return [channel for channel in channels if channel not in self.channels]


CAMPAIGN_TEMPLATES: Dict[str, CampaignTemplate] = {
    'brand_awareness': CampaignTemplate(
        id='brand_awareness_template',
        name='Brand Awareness Campaign',
        goal='brand_awareness',
        channels=['email', 'social_media', 'content_marketing'],
        segments=['potential_customers', 'industry_professionals', 'stakeholders'],
        tone_guidelines='Professional yet approachable, confident, inspiring',
        metric_targets={'reach': 50000, 'impressions': 200000, 'engagement_rate': 0.05},
    ),
    'lead_generation': CampaignTemplate(
        id='lead_generation_template',
        name='Lead Generation Campaign',
        goal='lead_generation',
        channels=['email', 'paid_ads', 'content_marketing'],
        segments=['decision_makers', 'researchers', 'evaluators'],
        tone_guidelines='Helpful, authoritative, solution-focused',
        metric_targets={'leads': 500, 'conversion_rate': 0.05, 'cost_per_lead': 50},
    ),
    'customer_retention': CampaignTemplate(
        id='customer_retention_template',
        name='Customer Retention Campaign',
        goal='customer_retention',
        channels=['email', 'sms'],
        segments=['active_customers', 'at_risk_customers'],
        tone_guidelines='Warm, appreciative, personal',
        metric_targets={'retention_rate': 0.85, 'repeat_purchase_rate': 0.3},
    ),
    'product_launch': CampaignTemplate(
        id='product_launch_template',
        name='Product Launch Campaign',
        goal='product_launch',
        channels=['email', 'social_media', 'paid_ads'],
        segments=['early_adopters', 'existing_customers'],
        tone_guidelines='Energetic, clear, benefit-led',
        metric_targets={'signups': 1000, 'engagement_rate': 0.08},
    ),
}


def get_campaign_template(goal: Optional[str]) -> Optional[CampaignTemplate]:
    """Template registered for a goal, or None."""
    if not goal:
        return None
    return CAMPAIGN_TEMPLATES.get(goal)
