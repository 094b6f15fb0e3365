from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('full_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(20), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(32), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('avatar', sa.String(1024)),
        sa.Column('agent_profile', sa.JSON),
        sa.Column('login_attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_login', sa.DateTime),
        sa.Column('password_changed_at', sa.DateTime),
        sa.Column('password_reset_token_hash', sa.String(255)),
        sa.Column('password_reset_expires', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ix_users_phone', 'users', ['phone'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'properties',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('property_id', sa.Integer, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('location', sa.String(255), nullable=False),
        sa.Column('district', sa.String(64), nullable=False),
        sa.Column('price', sa.Float, nullable=False),
        sa.Column('beds', sa.Integer, nullable=False),
        sa.Column('baths', sa.Integer, nullable=False),
        sa.Column('sqft', sa.Integer),
        sa.Column('year_built', sa.Integer, nullable=False),
        sa.Column('lot_size', sa.Integer, nullable=False),
        sa.Column('property_type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(32), nullable=False),
        sa.Column('listing_type', sa.String(8), nullable=False),
        sa.Column('document_type', sa.String(32)),
        sa.Column('measurement', sa.String(64)),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('features', sa.JSON),
        sa.Column('amenities', sa.JSON),
        sa.Column('featured', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('thumbnail_image', sa.String(1024), nullable=False, server_default=''),
        sa.Column('images', sa.JSON),
        sa.Column('agent_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('agent', sa.JSON, nullable=False),
        sa.Column('deletion_status', sa.String(24), nullable=False, server_default='active'),
        sa.Column('deletion_requested_at', sa.DateTime),
        sa.Column('deletion_requested_by', sa.String(64)),
        sa.Column('deletion_confirmed_at', sa.DateTime),
        sa.Column('deletion_confirmed_by', sa.String(64)),
        sa.Column('view_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unique_view_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unique_viewers', sa.JSON),
        sa.Column('anonymous_viewers', sa.JSON),
        sa.Column('last_viewed_at', sa.DateTime),
        sa.Column('view_history', sa.JSON),
        sa.Column('suspicious_activity', sa.JSON),
        sa.Column('view_quality_score', sa.Float, nullable=False, server_default='100'),
        sa.Column('last_quality_calculation', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime),
    )
    op.create_index('ix_properties_location', 'properties', ['location'])
    op.create_index('ix_properties_district', 'properties', ['district'])
    op.create_index('ix_properties_price', 'properties', ['price'])
    op.create_index('ix_properties_property_type', 'properties', ['property_type'])
    op.create_index('ix_properties_status', 'properties', ['status'])
    op.create_index('ix_properties_featured', 'properties', ['featured'])
    op.create_index('ix_properties_agent_id', 'properties', ['agent_id'])
    op.create_index('ix_properties_created_at', 'properties', ['created_at'])
    op.create_index('ix_properties_agent_deletion_created', 'properties', ['agent_id', 'deletion_status', 'created_at'])
    op.create_index('ix_properties_district_status_price', 'properties', ['district', 'status', 'price'])
    op.create_index('ix_properties_deletion_created', 'properties', ['deletion_status', 'created_at'])

    op.create_table(
        'counters',
        sa.Column('name', sa.String(64), primary_key=True),
        sa.Column('sequence', sa.Integer, nullable=False, server_default='0'),
    )

    op.create_table(
        'admin_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('admin_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(255), nullable=False),
        sa.Column('entity_id', sa.String(64)),
        sa.Column('details', sa.JSON),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index('ix_admin_logs_admin_id', 'admin_logs', ['admin_id'])
    op.create_index('ix_admin_logs_action', 'admin_logs', ['action'])


def downgrade():
    op.drop_table('admin_logs')
    op.drop_table('counters')
    op.drop_table('properties')
    op.drop_table('users')
