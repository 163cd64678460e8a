"""Create safety scoring and navigation tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '1a2b3c4d5e6f'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('locations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('google_place_id', sa.String(), nullable=True),
        sa.Column('place_type', sa.String(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('google_place_id'),
    )

    op.create_table('safety_scores',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('demographic_type', sa.String(), nullable=False),
        sa.Column('demographic_value', sa.String(), nullable=True),
        sa.Column('avg_overall_score', sa.Float(), nullable=False),
        sa.Column('review_count', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'demographic_type', 'demographic_value', name='uq_safety_score_slice'),
    )
    op.create_index('ix_safety_scores_location_id', 'safety_scores', ['location_id'])

    op.create_table('reviews',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=True),
        sa.Column('location_name', sa.String(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('safety_rating', sa.Float(), nullable=False),
        sa.Column('demographic_tags', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reviews_location_id', 'reviews', ['location_id'])
    op.create_index('ix_reviews_user_id', 'reviews', ['user_id'])
    op.create_index('ix_reviews_created_at', 'reviews', ['created_at'])
    op.create_index('idx_reviews_location_created', 'reviews', ['location_id', 'created_at'])

    op.create_table('neighborhood_stats',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('crime_rate_per_1000', sa.Float(), nullable=False),
        sa.Column('hate_crime_incidents', sa.Integer(), nullable=True),
        sa.Column('diversity_index', sa.Float(), nullable=True),
        sa.Column('data_point_count', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id'),
    )

    op.create_table('user_profiles',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('race_ethnicity', sa.Text(), nullable=True),
        sa.Column('gender', sa.String(), nullable=True),
        sa.Column('lgbtq_status', sa.Boolean(), nullable=True),
        sa.Column('disability_status', sa.Text(), nullable=True),
        sa.Column('religion', sa.String(), nullable=True),
        sa.Column('age_range', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    session_status = sa.Enum('ACTIVE', 'REROUTING', 'ENDED', name='sessionstatus')
    op.create_table('navigation_sessions',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('active_route_id', sa.String(), nullable=True),
        sa.Column('current_step_index', sa.Integer(), nullable=True),
        sa.Column('status', session_status, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_navigation_sessions_device_id', 'navigation_sessions', ['device_id'])

    op.create_table('route_plans',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('polyline_json', sa.Text(), nullable=False),
        sa.Column('distance_m', sa.Float(), nullable=False),
        sa.Column('duration_s', sa.Float(), nullable=False),
        sa.Column('overall_score', sa.Float(), nullable=False),
        sa.Column('classification', sa.String(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('alternative_rank', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['session_id'], ['navigation_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_route_plans_session_id', 'route_plans', ['session_id'])

    alert_action = sa.Enum('REROUTE_ATTEMPTED', 'USER_CONTINUED', name='alertactiontype')
    op.create_table('safety_alerts_handled',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('route_id', sa.String(), nullable=False),
        sa.Column('review_id', sa.String(), nullable=False),
        sa.Column('action', alert_action, nullable=False),
        sa.Column('review_latitude', sa.Float(), nullable=False),
        sa.Column('review_longitude', sa.Float(), nullable=False),
        sa.Column('review_safety_rating', sa.Float(), nullable=False),
        sa.Column('handled_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'review_id', name='uq_alert_session_review'),
    )
    op.create_index('ix_safety_alerts_handled_session_id', 'safety_alerts_handled', ['session_id'])

    vote_kind = sa.Enum('ACCURATE', 'INACCURATE', name='votekind')
    op.create_table('prediction_votes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('google_place_id', sa.String(), nullable=True),
        sa.Column('vote_type', vote_kind, nullable=False),
        sa.Column('prediction_source', sa.String(), nullable=False),
        sa.Column('predicted_safety_score', sa.Float(), nullable=False),
        sa.Column('user_demographics', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'location_id', name='uq_vote_user_location'),
        sa.UniqueConstraint('user_id', 'google_place_id', name='uq_vote_user_place'),
    )
    op.create_index('ix_prediction_votes_user_id', 'prediction_votes', ['user_id'])

    op.create_table('prediction_vote_counts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('location_id', sa.String(), nullable=False),
        sa.Column('demographic_type', sa.String(), nullable=False),
        sa.Column('demographic_value', sa.String(), nullable=False),
        sa.Column('accurate_count', sa.Integer(), nullable=False),
        sa.Column('inaccurate_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('location_id', 'demographic_type', 'demographic_value', name='uq_vote_count_slice'),
    )
    op.create_index('ix_prediction_vote_counts_location_id', 'prediction_vote_counts', ['location_id'])


def downgrade() -> None:
    op.drop_table('prediction_vote_counts')
    op.drop_table('prediction_votes')
    op.drop_table('safety_alerts_handled')
    op.drop_table('route_plans')
    op.drop_table('navigation_sessions')
    op.drop_table('user_profiles')
    op.drop_table('neighborhood_stats')
    op.drop_table('reviews')
    op.drop_table('safety_scores')
    op.drop_table('locations')

    sa.Enum(name='votekind').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='alertactiontype').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='sessionstatus').drop(op.get_bind(), checkfirst=True)
