"""create tournament bracket tables

Revision ID: 001_create_bracket_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_create_bracket_tables'
down_revision = None
branch_labels = None
depends_on = None


tournament_status = sa.Enum('upcoming', 'active', 'completed', name='tournament_status')
participant_status = sa.Enum('pending', 'approved', 'rejected', name='participant_status')
battle_status = sa.Enum('scheduled', 'in_progress', 'completed', 'bye', name='battle_status')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Tournaments, registrations, qualifier attempts and bracket battles."""
    op.create_table(
        'tournaments',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('status', tournament_status, nullable=False, server_default='upcoming'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True, comment='Qualification deadline'),
        sa.Column('bracket_slots', sa.Integer, nullable=True,
                  comment='Number of seeds taken from qualification; unset uses the configured default'),
        sa.Column('round_delay_days', sa.Integer, nullable=True,
                  comment='Days between rounds (takes precedence over rules)'),
        sa.Column('rules', sa.JSON, nullable=True, comment='Free-form rules; mapping or serialized JSON string'),
        sa.Column('winner_id', sa.BigInteger, nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tournaments_status', 'tournaments', ['status'])

    op.create_table(
        'tournament_participants',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.BigInteger, sa.ForeignKey('tournaments.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('player_id', sa.BigInteger, nullable=False),
        sa.Column('status', participant_status, nullable=False, server_default='pending'),
        *_timestamps(),
        sa.UniqueConstraint('tournament_id', 'player_id', name='uq_participant_tournament_player'),
    )

    op.create_table(
        'tournament_qualification_attempts',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.BigInteger, sa.ForeignKey('tournaments.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('player_id', sa.BigInteger, nullable=False, index=True),
        sa.Column('score', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('duration_seconds', sa.Integer, nullable=True,
                  comment='NULL ranks as the slowest possible time'),
        *_timestamps(),
    )

    op.create_table(
        'tournament_battles',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.BigInteger, sa.ForeignKey('tournaments.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('round', sa.Integer, nullable=False),
        sa.Column('player1_id', sa.BigInteger, nullable=False),
        sa.Column('player2_id', sa.BigInteger, nullable=True),
        sa.Column('winner_id', sa.BigInteger, nullable=True),
        sa.Column('player1_score', sa.Numeric(10, 2), nullable=True),
        sa.Column('player2_score', sa.Numeric(10, 2), nullable=True),
        sa.Column('forfeit_reason', sa.String(255), nullable=True),
        sa.Column('status', battle_status, nullable=False, server_default='scheduled'),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # A player appears at most once per round; NULL opponents (byes) never collide
    op.create_unique_constraint(
        'uq_battle_round_player1', 'tournament_battles', ['tournament_id', 'round', 'player1_id']
    )
    op.create_unique_constraint(
        'uq_battle_round_player2', 'tournament_battles', ['tournament_id', 'round', 'player2_id']
    )
    op.create_index('ix_battle_tournament_round', 'tournament_battles', ['tournament_id', 'round'])


def downgrade() -> None:
    op.drop_index('ix_battle_tournament_round', table_name='tournament_battles')
    op.drop_constraint('uq_battle_round_player2', 'tournament_battles')
    op.drop_constraint('uq_battle_round_player1', 'tournament_battles')
    op.drop_table('tournament_battles')
    op.drop_table('tournament_qualification_attempts')
    op.drop_table('tournament_participants')
    op.drop_index('ix_tournaments_status', table_name='tournaments')
    op.drop_table('tournaments')

    battle_status.drop(op.get_bind(), checkfirst=True)
    participant_status.drop(op.get_bind(), checkfirst=True)
    tournament_status.drop(op.get_bind(), checkfirst=True)
