"""
Test helpers shared by the autopilot service, task and route tests
"""

from datetime import datetime, timedelta, timezone

from autopilot_database import CampaignPattern


class FakeClock:
    """Controllable clock injected into services in place of utc_now"""

    def __init__(self, now=None):
        # Tuesday 4 March 2025, 08:00 UTC
        self.now = now or datetime(2025, 3, 4, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def create_test_pattern(session, **kwargs):
    """
    Helper function to create a stored campaign pattern with default values.
    Used across multiple test files.
    """
    defaults = {
        'id': 'pattern-spring-launch',
        'summary': 'Product launch email series for power users',
        'winning_variants': {
            'subjects': ['Meet the new dashboard', 'Your workflow, twice as fast'],
            'content_styles': ['email'],
            'cta_types': ['start_trial'],
            'timing_windows': ['tuesday_10'],
            'agent_sequences': ['insight-agent', 'content-agent', 'email-agent'],
        },
        'pattern_score': 90.0,
        'segments': {'behavioral': ['power_users'], 'demographics': []},
    }
    defaults.update(kwargs)
    pattern = CampaignPattern(**defaults)
    session.add(pattern)
    session.flush()
    return pattern
