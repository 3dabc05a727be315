"""
Migration catalog: Odoo 17.0 -> 18.0.

Same conventions as the 16 -> 17 catalog: ascending ``order``, idempotent
statements, and guards on every table or column outside REQUIRED_TABLES.
"""

from .models import (
    MigrationPath,
    MigrationScript,
    column_missing_condition,
    config_parameter_equals,
    required_tables_check,
    set_config_parameter,
    table_exists_check,
)

PATH_ID = "17-to-18"
SOURCE_VERSION = "17.0"
TARGET_VERSION = "18.0"

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
        id="pre-001-backup-check-18",
        name="Verify backup integrity",
        description="Ensure critical tables exist before migration",
        order=1,
        sql=required_tables_check(
            ("ir_module_module", "res_users", "res_partner", "res_company")
        ),
        post_check="SELECT true AS valid",
    ),
    MigrationScript(
        id="pre-002-version-check",
        name="Verify source version is 17.x",
        description="Refuse to run on a database marked with another version",
        order=2,
        sql="""
          DO $$
          DECLARE
            current_version text;
          BEGIN
            SELECT value INTO current_version
            FROM ir_config_parameter
            WHERE key = 'database.version';

            IF current_version IS NOT NULL AND current_version NOT LIKE '17.%' THEN
              RAISE EXCEPTION 'Database version must be 17.x to migrate to 18. Current: %',
                current_version;
            END IF;
          END $$;
        """,
    ),
    # ===== Module system =====
    MigrationScript(
        id="mod-001-module-category",
        name="Update module category structure",
        description="Odoo 18 module categories carry an icon",
        order=10,
        pre_check=table_exists_check("ir_module_category"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("ir_module_category", "icon")} THEN
              ALTER TABLE ir_module_category ADD COLUMN icon VARCHAR(256);
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="mod-002-module-license",
        name="Update module license tracking",
        description="Group module licenses into families",
        order=11,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("ir_module_module", "license_family")} THEN
              ALTER TABLE ir_module_module ADD COLUMN license_family VARCHAR(64);

              IF NOT {column_missing_condition("ir_module_module", "license")} THEN
                UPDATE ir_module_module
                SET license_family = CASE
                  WHEN license IN ('LGPL-3', 'LGPL-3+') THEN 'lgpl'
                  WHEN license IN ('GPL-3', 'GPL-3+', 'AGPL-3') THEN 'gpl'
                  WHEN license IN ('OPL-1', 'OEEL-1') THEN 'proprietary'
                  ELSE 'other'
                END
                WHERE license IS NOT NULL;
              END IF;
            END IF;
          END $$;
        """,
    ),
    # ===== Partners =====
    MigrationScript(
        id="partner-001-avatar-field",
        name="Add partner avatar fields",
        description="Avatar thumbnails and inline addresses in Odoo 18",
        order=20,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_partner", "avatar_256")} THEN
              ALTER TABLE res_partner ADD COLUMN avatar_256 BYTEA;
            END IF;

            IF {column_missing_condition("res_partner", "contact_address_inline")} THEN
              ALTER TABLE res_partner ADD COLUMN contact_address_inline TEXT;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="partner-002-additional-info",
        name="Add partner additional info fields",
        description="Portal share and signup status flags in Odoo 18",
        order=21,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_partner", "partner_share")} THEN
              ALTER TABLE res_partner ADD COLUMN partner_share BOOLEAN DEFAULT false;
            END IF;

            IF {column_missing_condition("res_partner", "signup_valid")} THEN
              ALTER TABLE res_partner ADD COLUMN signup_valid BOOLEAN DEFAULT false;
            END IF;
          END $$;
        """,
    ),
    # ===== Users / authentication =====
    MigrationScript(
        id="user-001-password-policy",
        name="Add password policy fields",
        description="Track password age for the Odoo 18 password policy",
        order=30,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_users", "password_write_date")} THEN
              ALTER TABLE res_users ADD COLUMN password_write_date TIMESTAMP;

              IF NOT {column_missing_condition("res_users", "password")}
                 AND NOT {column_missing_condition("res_users", "write_date")} THEN
                UPDATE res_users
                SET password_write_date = write_date
                WHERE password IS NOT NULL;
              END IF;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="user-002-session-management",
        name="Update session management tables",
        description="Device and address tracking on user sessions",
        order=31,
        pre_check=table_exists_check("res_users_log"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_users_log", "device_id")} THEN
              ALTER TABLE res_users_log ADD COLUMN device_id VARCHAR(128);
            END IF;

            IF {column_missing_condition("res_users_log", "ip_address")} THEN
              ALTER TABLE res_users_log ADD COLUMN ip_address INET;
            END IF;
          END $$;
        """,
    ),
    # ===== Accounting =====
    MigrationScript(
        id="account-001-tax-changes",
        name="Update tax structure",
        description="Base-affected flag on taxes in Odoo 18",
        order=40,
        pre_check=table_exists_check("account_tax"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("account_tax", "is_base_affected")} THEN
              ALTER TABLE account_tax ADD COLUMN is_base_affected BOOLEAN DEFAULT false;
            END IF;
          END $$;
        """,
    ),
    MigrationScript(
        id="account-002-journal-changes",
        name="Update journal structure",
        description="Default and suspense accounts on journals",
        order=41,
        pre_check=table_exists_check("account_journal"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("account_journal", "default_account_id")} THEN
              ALTER TABLE account_journal ADD COLUMN default_account_id INTEGER;
            END IF;

            IF {column_missing_condition("account_journal", "suspense_account_id")} THEN
              ALTER TABLE account_journal ADD COLUMN suspense_account_id INTEGER;
            END IF;
          END $$;
        """,
    ),
    # ===== Mail =====
    MigrationScript(
        id="mail-001-reaction-support",
        name="Add message reaction support",
        description="Emoji reactions on messages in Odoo 18",
        order=50,
        pre_check=table_exists_check("mail_message"),
        sql="""
          CREATE TABLE IF NOT EXISTS mail_message_reaction (
            id SERIAL PRIMARY KEY,
            message_id INTEGER REFERENCES mail_message(id) ON DELETE CASCADE,
            partner_id INTEGER REFERENCES res_partner(id) ON DELETE CASCADE,
            reaction VARCHAR(32) NOT NULL,
            create_date TIMESTAMP DEFAULT NOW(),
            UNIQUE (message_id, partner_id, reaction)
          );

          CREATE INDEX IF NOT EXISTS mail_message_reaction_message_idx
            ON mail_message_reaction (message_id);
        """,
    ),
    MigrationScript(
        id="mail-002-scheduled-messages",
        name="Add scheduled message support",
        description="Delayed message sending in Odoo 18",
        order=51,
        pre_check=table_exists_check("mail_message"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("mail_message", "scheduled_date")} THEN
              ALTER TABLE mail_message
                ADD COLUMN scheduled_date TIMESTAMP,
                ADD COLUMN is_scheduled BOOLEAN DEFAULT false;
            END IF;
          END $$;
        """,
    ),
    # ===== Web =====
    MigrationScript(
        id="web-001-theme-variables",
        name="Update theme variable structure",
        description="Visibility control on customizable views",
        order=60,
        pre_check=table_exists_check("ir_ui_view"),
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("ir_ui_view", "customize_show")} THEN
              ALTER TABLE ir_ui_view ADD COLUMN customize_show BOOLEAN DEFAULT true;
            END IF;
          END $$;
        """,
    ),
    # ===== New Odoo 18 features =====
    MigrationScript(
        id="new-001-knowledge-base",
        name="Prepare for Knowledge module",
        description="Link partners to Knowledge articles",
        order=70,
        sql=f"""
          DO $$
          BEGIN
            IF {column_missing_condition("res_partner", "knowledge_article_ids")} THEN
              ALTER TABLE res_partner ADD COLUMN knowledge_article_ids INTEGER[];
            END IF;
          END $$;
        """,
    ),
    # ===== Version markers =====
    MigrationScript(
        id="version-001-mark-18",
        name="Mark database as Odoo 18",
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
