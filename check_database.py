#!/usr/bin/env python3
"""
Quick script to check if the standup database is working and show its contents
"""
import asyncio
from datetime import datetime

from database import StandupDatabase
from runtime.config import load_config


async def check_database():
    config = load_config()
    db = StandupDatabase(
        db_path=config.db_path,
        database_url=config.database_url,
        admin_usernames=config.admin_usernames,
        default_settings=config.default_settings,
        default_timezone=config.reference_timezone,
    )

    if db.use_postgres:
        print("✅ DATABASE_URL found")
        print(f"   URL prefix: {config.database_url[:30]}...")
    else:
        print(f"ℹ️  DATABASE_URL not set, using SQLite at {config.db_path}")

    try:
        print("\n🔄 Connecting...")
        await db.initialize()
        print("✅ Connected successfully!")

        settings = await db.get_schedule_settings()
        print(f"\n⏰ Standup time: {settings.time_label} (reference {config.reference_timezone})")
        print(f"   Late reminders: {'on' if settings.late_reminder_enabled else 'off'}, "
              f"{settings.late_reminder_hours}h after the standup")

        subscribers = await db.get_all_subscribers()
        print(f"\n📊 Total subscribers: {len(subscribers)}")

        today = datetime.now(config.reference_tz).date()
        for sub in subscribers:
            flags = []
            if sub.username in config.admin_usernames:
                flags.append("admin")
            if sub.is_on_vacation_on(today):
                flags.append(f"vacation until {sub.vacation_until or '?'}")
            suffix = f" [{', '.join(flags)}]" if flags else ""
            print(f"   @{sub.username} ({sub.user_id}) {sub.timezone}{suffix}")

        standups = await db.get_standups_for_day(today)
        print(f"\n📋 Standups submitted today ({today.isoformat()}): {len(standups)}")
        for response in standups:
            print(f"   @{response.username} at {response.submitted_at.isoformat()}")

        reminders = await db.get_late_reminders(today)
        print(f"\n⚠️  Late reminders sent today: {len(reminders)}")
        for record in reminders:
            print(f"   {record.user_id} at {record.sent_at.isoformat()}")

        print("\n✅ Database check complete!")

    except Exception as e:
        print(f"\n❌ Error checking database: {e}")
        print("\n   This might mean:")
        print("   - The DATABASE_URL is incorrect")
        print("   - The database service is not running")
        print("   - There's a network issue")
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(check_database())
