"""
Migration catalog: Odoo 16.0 -> 17.0.

Scripts are executed in ascending ``order``. Every script is idempotent and
every statement touching a table outside REQUIRED_TABLES is guarded, so
the full catalog runs on a database that contains only the required tables.
"""

from .models import (
    MigrationPath,
    MigrationScript,
    column_exists_check,
    column_missing_condition,
    config_parameter_equals,
    required_tables_check,
    set_config_parameter,
    table_exists_check,
)

PATH_ID = "16-to-17"
SOURCE_VERSION = "16.0"
TARGET_VERSION = "17.0"

REQUIRED_TABLES = (
    "ir_module_module",
    "res_users",
    "res_partner",
    "res_company",
    "ir_config_parameter",
)

SCRIPTS: tuple[MigrationScript, ...] = (
    # ===== Pre-migration safety checks =====
    MigrationScript(
        id="pre-001-backup-check",
        name="Verify backup integrity",
        description="Ensure critical tables exist before migration",
        order=1,
        sql=required_tables_check(
            ("ir_module_module", "res_users", "res_partner", "res_company")
        ),
        post_check="SELECT true AS valid",
    ),
    # ===== Module system =====
    MigrationScript(
        id="mod-001-module-dependencies",
        name="Update module dependency format",
        description="Odoo 17 links module dependencies by foreign key",
        order=10,
        pre_check=column_exists_check("ir_module_module_dependency", "name"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("ir_module_module_dependency", "depend_id")} THEN
              ALTER TABLE ir_module_module_dependency ADD COLUMN depend_id INTEGER;

              UPDATE ir_module_module_dependency d
              SET depend_id = m.id
              FROM ir_module_module m
              WHERE d.name = m.name;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="mod-002-module-state",
        name="Update module states",
        description="Normalize module states for Odoo 17",
        order=11,
        sql="""
          UPDATE ir_module_module
          SET state = 'uninstalled'
          WHERE state = 'uninstallable';

          UPDATE ir_module_module
          SET state = 'installed'
          WHERE name = 'base' AND state <> 'installed';
        """,
    ),
    # ===== Partners =====
    MigrationScript(
        id="partner-001-trust-field",
        name="Add partner trust fields",
        description="Odoo 17 added trust scoring and geolocation fields to partners",
        order=20,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_partner", "trust")} THEN
              ALTER TABLE res_partner ADD COLUMN trust VARCHAR(16) DEFAULT 'normal';
            END IF;

            IF {column_missing_condition("res_partner", "partner_latitude")} THEN
              ALTER TABLE res_partner
                ADD COLUMN partner_latitude DOUBLE PRECISION,
                ADD COLUMN partner_longitude DOUBLE PRECISION;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="partner-002-activity-tracking",
        name="Add activity tracking fields",
        description="New activity tracking columns in Odoo 17",
        order=21,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_partner", "activity_date_deadline")} THEN
              ALTER TABLE res_partner
                ADD COLUMN activity_date_deadline DATE,
                ADD COLUMN activity_state VARCHAR(16),
                ADD COLUMN activity_summary TEXT,
                ADD COLUMN activity_type_id INTEGER;
            END IF;
          END $$;
        """,
    ),
    # ===== Users / authentication =====
    MigrationScript(
        id="user-001-totp-columns",
        name="Add TOTP authentication columns",
        description="Odoo 17 enhanced two-factor authentication",
        order=30,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_users", "totp_secret")} THEN
              ALTER TABLE res_users
                ADD COLUMN totp_secret VARCHAR(32),
                ADD COLUMN totp_enabled BOOLEAN DEFAULT false;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="user-002-api-keys",
        name="Update API key structure",
        description="API keys gained a permission scope in Odoo 17",
        order=31,
        pre_check=table_exists_check("res_users_apikeys"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_users_apikeys", "scope")} THEN
              ALTER TABLE res_users_apikeys ADD COLUMN scope TEXT;
            END IF;
          END $$;
        """,
    ),
    # ===== Companies =====
    MigrationScript(
        id="company-001-company-branding",
        name="Add company branding fields",
        description="Odoo 17 stores a company color and a default-logo flag",
        order=35,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_company", "color")} THEN
              ALTER TABLE res_company ADD COLUMN color INTEGER;
            END IF;

            IF {column_missing_condition("res_company", "uses_default_logo")} THEN
              ALTER TABLE res_company ADD COLUMN uses_default_logo BOOLEAN DEFAULT true;
            END IF;
          END $$;
        """,
    ),
    # ===== Accounting =====
    MigrationScript(
        id="account-001-move-name",
        name="Update account.move structure",
        description="Invoice quick edit and payment terms tracking in Odoo 17",
        order=40,
        pre_check=table_exists_check("account_move"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("account_move", "quick_edit_mode")} THEN
              ALTER TABLE account_move ADD COLUMN quick_edit_mode BOOLEAN DEFAULT false;
            END IF;

            IF {column_missing_condition("account_move", "needed_terms")} THEN
              ALTER TABLE account_move ADD COLUMN needed_terms JSONB;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="account-002-payment-state",
        name="Migrate payment state values",
        description="Payment state values changed in Odoo 17",
        order=41,
        pre_check=column_exists_check("account_move", "payment_state"),
        sql="""
          UPDATE account_move
          SET payment_state = 'not_paid'
          WHERE payment_state IS NULL OR payment_state = '';

          UPDATE account_move
          SET payment_state = 'not_paid'
          WHERE payment_state = 'invoicing_legacy';
        """,
    ),
    # ===== Mail =====
    MigrationScript(
        id="mail-001-message-structure",
        name="Update mail.message structure",
        description="Link previews and author flags on messages in Odoo 17",
        order=50,
        pre_check=table_exists_check("mail_message"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("mail_message", "link_preview_id")} THEN
              ALTER TABLE mail_message ADD COLUMN link_preview_id INTEGER;
            END IF;

            IF {column_missing_condition("mail_message", "is_current_user_or_guest_author")} THEN
              ALTER TABLE mail_message
                ADD COLUMN is_current_user_or_guest_author BOOLEAN DEFAULT false;
            END IF;
          END $$;
        """,
    ),
    # ===== Web assets =====
    MigrationScript(
        id="web-001-asset-bundle",
        name="Update asset bundle structure",
        description="Frontend assets gained a target in Odoo 17",
        order=60,
        pre_check=table_exists_check("ir_asset"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("ir_asset", "target")} THEN
              ALTER TABLE ir_asset ADD COLUMN target VARCHAR(64);
            END IF;
          END $$;
        """,
    ),
    # ===== Version markers =====
    MigrationScript(
        id="version-001-mark-17",
        name="Mark database as Odoo 17",
        description="Update the version marker, migration date and previous version",
        order=100,
        sql=set_config_parameter("database.version", f"'{TARGET_VERSION}'")
        + set_config_parameter("database.migration_date", "NOW()::text")
        + set_config_parameter("database.previous_version", f"'{SOURCE_VERSION}'"),
        post_check=config_parameter_equals("database.version", TARGET_VERSION),
    ),
    # ===== Post-migration cleanup =====
    MigrationScript(
        id="post-001-recompute-stored",
        name="Mark stored computed fields for recompute",
        description="Trigger recomputation of stored computed fields",
        order=110,
        pre_check=table_exists_check("ir_model_fields"),
        sql="""
          UPDATE ir_model_fields
          SET compute = compute
          WHERE store = true AND compute IS NOT NULL;
        """,
    ),
    MigrationScript(
        id="post-002-clear-caches",
        name="Clear system caches",
        description="Drop generated asset bundles and flag QWeb views for refresh",
        order=120,
        sql="""
          DO $$
          BEGIN
            IF EXISTS (
              SELECT FROM pg_tables
              WHERE schemaname = 'public' AND tablename = 'ir_attachment'
            ) THEN
              DELETE FROM ir_attachment
              WHERE res_model = 'ir.ui.view'
                AND name LIKE '%.assets%';
            END IF;

            IF EXISTS (
              SELECT FROM information_schema.columns
              WHERE table_schema = 'public'
                AND table_name = 'ir_ui_view'
                AND column_name = 'arch_updated'
            ) THEN
              UPDATE ir_ui_view SET arch_updated = true WHERE type = 'qweb';
            END IF;
          END $$;
        """,
    ),
)

PATH = MigrationPath(
    id=PATH_ID,
    source_version=SOURCE_VERSION,
    target_version=TARGET_VERSION,
    scripts=SCRIPTS,
    required_tables=REQUIRED_TABLES,
)
