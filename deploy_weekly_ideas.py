from prefect.client.schemas.schedules import CronSchedule
from flows.weekly_ideas_flow import weekly_ideas_dispatch


if __name__ == "__main__":
    weekly_ideas_dispatch.deploy(
        name="weekly-ideas-dispatch",
        work_pool_name="ideadrip-managed",
        tags=["email", "weekly-ideas"],
        schedule=CronSchedule(
            cron="*/5 * * * *",  # must stay <= the 5-minute window tolerance
            timezone="UTC",
        ),
        description=(
            "Every 5 minutes: find subscribers inside their weekly slot "
            "(their own timezone), generate ideas, email them, log outcomes."
        ),
        # Required by Prefect 3 deploy() to avoid the remote storage check.
        image="ideadrip/weekly-ideas:placeholder",
    )
