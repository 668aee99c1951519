# autopilot_database.py

from extensions import db
from utils.datetime_utils import utc_now


# --- Timing knowledge ---
class TimingInsight(db.Model):
    __tablename__ = 'timing_insight'

    id = db.Column(db.Integer, primary_key=True)
    audience_segment = db.Column(db.String(100), nullable=False)
    content_type = db.Column(db.String(50), nullable=False)

    # Optimal time, expressed in `timezone`
    day_of_week = db.Column(db.Integer, nullable=False)  # 0=Monday ... 6=Sunday
    hour = db.Column(db.Integer, nullable=False)  # 0-23
    timezone = db.Column(db.String(50), default='UTC')

    # Rates are percentages (0-100)
    open_rate = db.Column(db.Float, default=0.0)
    click_rate = db.Column(db.Float, default=0.0)
    conversion_rate = db.Column(db.Float, default=0.0)
    confidence = db.Column(db.Float, default=0.0)  # 0.0-1.0
    sample_size = db.Column(db.Integer, default=0)

    seasonal_trends = db.Column(db.JSON, nullable=True)  # season -> multiplier
    last_updated = db.Column(db.DateTime, default=utc_now)
    decayed_at = db.Column(db.DateTime, nullable=True)  # last learning-cycle boundary applied
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.Index('idx_timing_insight_key', 'audience_segment', 'content_type'),
        db.Index('idx_timing_insight_slot', 'audience_segment', 'content_type', 'day_of_week', 'hour', 'timezone'),
    )

    def __repr__(self):
        return (f'<TimingInsight {self.audience_segment}/{self.content_type} '
                f'day={self.day_of_week} hour={self.hour} conf={self.confidence:.2f}>')


# --- Schedules ---
class CampaignSchedule(db.Model):
    __tablename__ = 'campaign_schedule'

    id = db.Column(db.Integer, primary_key=True)
    campaign_id = db.Column(db.String(100), nullable=False)
    scheduled_time = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), default='scheduled')  # scheduled, running, completed, failed, cancelled
    priority = db.Column(db.String(20), default='medium')  # low, medium, high, critical

    # Recurrence
    recurrence_interval = db.Column(db.String(20), nullable=True)  # daily, weekly, monthly
    recurrence_end_date = db.Column(db.DateTime, nullable=True)
    parent_schedule_id = db.Column(db.Integer, db.ForeignKey('campaign_schedule.id'), nullable=True)

    spec_payload = db.Column(db.JSON, nullable=False)
    warnings = db.Column(db.JSON, nullable=True)
    execution_id = db.Column(db.Integer, db.ForeignKey('campaign_execution.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    parent_schedule = db.relationship('CampaignSchedule', remote_side=[id],
                                      backref=db.backref('child_schedules', lazy='dynamic'))

    __table_args__ = (
        db.Index('idx_campaign_schedule_due', 'status', 'scheduled_time'),
    )

    @property
    def is_recurring(self):
        return self.recurrence_interval is not None

    def __repr__(self):
        return f'<CampaignSchedule {self.id} {self.campaign_id} {self.status}>'


# --- Executions ---
class CampaignExecution(db.Model):
    __tablename__ = 'campaign_execution'

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.String(100), nullable=False)
    schedule_id = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(20), default='running')  # scheduled, running, completed, failed, cancelled
    progress = db.Column(db.Integer, default=0)  # 0-100
    priority = db.Column(db.String(20), default='medium')

    # Metrics accumulator
    delivered = db.Column(db.Integer, default=0)
    opened = db.Column(db.Integer, default=0)
    clicked = db.Column(db.Integer, default=0)
    converted = db.Column(db.Integer, default=0)
    revenue = db.Column(db.Float, default=0.0)

    steps = db.Column(db.JSON, nullable=False)
    current_step = db.Column(db.Integer, default=0)
    activity_log = db.Column(db.JSON, nullable=True)
    health_flags = db.Column(db.JSON, nullable=True)
    spec_payload = db.Column(db.JSON, nullable=False)

    cancel_requested = db.Column(db.Boolean, default=False)
    error_note = db.Column(db.Text, nullable=True)
    started_at = db.Column(db.DateTime, default=utc_now)
    completed_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.Index('idx_campaign_execution_status', 'status'),
    )

    @property
    def is_terminal(self):
        return self.status in ('completed', 'failed', 'cancelled')

    def __repr__(self):
        return f'<CampaignExecution {self.id} {self.plan_id} {self.status} {self.progress}%>'


# --- Pattern replay ---
class CampaignPattern(db.Model):
    """Scored historical configuration. Written by the analytics side, read-only here."""
    __tablename__ = 'campaign_pattern'

    id = db.Column(db.String(100), primary_key=True)
    summary = db.Column(db.Text, nullable=True)
    winning_variants = db.Column(db.JSON, nullable=True)
    pattern_score = db.Column(db.Float, default=0.0)  # 0-100
    segments = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now)

    def __repr__(self):
        return f'<CampaignPattern {self.id} score={self.pattern_score}>'


class ReplayExecution(db.Model):
    __tablename__ = 'replay_execution'

    id = db.Column(db.Integer, primary_key=True)
    pattern_id = db.Column(db.String(100), nullable=False)
    plan = db.Column(db.JSON, nullable=True)
    status = db.Column(db.String(20), default='queued')  # queued, running, completed, failed, cancelled
    modifications = db.Column(db.JSON, nullable=True)

    # Performance
    predicted_roi = db.Column(db.Float, nullable=True)
    actual_roi = db.Column(db.Float, nullable=True)
    variance = db.Column(db.Float, nullable=True)
    key_metrics = db.Column(db.JSON, nullable=True)

    learnings = db.Column(db.JSON, nullable=True)
    error_log = db.Column(db.JSON, nullable=True)
    execution_id = db.Column(db.Integer, db.ForeignKey('campaign_execution.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    execution = db.relationship('CampaignExecution')

    __table_args__ = (
        db.Index('idx_replay_execution_pattern', 'pattern_id', 'created_at'),
        db.Index('idx_replay_execution_status', 'status'),
    )

    @property
    def is_active(self):
        return self.status in ('queued', 'running')

    def __repr__(self):
        return f'<ReplayExecution {self.id} pattern={self.pattern_id} {self.status}>'


# --- Durable audit/memory log ---
class MemoryEntry(db.Model):
    __tablename__ = 'memory_entry'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(255), nullable=False)
    namespace = db.Column(db.String(100), nullable=False)
    value = db.Column(db.JSON, nullable=True)
    tags = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    __table_args__ = (
        db.Index('idx_memory_entry_namespace', 'namespace', 'created_at'),
        db.Index('idx_memory_entry_key', 'key'),
    )

    def __repr__(self):
        return f'<MemoryEntry {self.key}>'
