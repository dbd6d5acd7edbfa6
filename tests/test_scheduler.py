import asyncio
import os

from pipeline_daemon.generation import placeholders
from pipeline_daemon.jobs.models import FinalVoiceover, JobStatus, ProjectStatus
from pipeline_daemon.jobs.queue import claim_next_jobs, ensure_jobs_for_projects
from pipeline_daemon.jobs.scheduler import Scheduler, verify_health


class BlockingDispatcher:
    """Holds every job until released, tracking concurrent executions."""

    def __init__(self, result=True, error=None):
        self.release = None
        self.started = []
        self.running = {}
        self.max_per_project = 0
        self.result = result
        self.error = error

    async def execute(self, job):
        if self.release is None:
            self.release = asyncio.Event()
        self.started.append(job.project_id)
        self.running[job.project_id] = self.running.get(job.project_id, 0) + 1
        self.max_per_project = max(self.max_per_project, self.running[job.project_id])
        try:
            await self.release.wait()
            if self.error:
                raise self.error
            return self.result
        finally:
            self.running[job.project_id] -= 1


def _eligible(api, count, status=ProjectStatus.PROCESS_METADATA):
    for index in range(1, count + 1):
        api.add_project(f"p{index}", status, ["en"])


def test_tick_claims_up_to_capacity_and_leaves_rest_queued(api, settings):
    _eligible(api, 3)
    for pid in ("p1", "p2", "p3"):
        api.add_job(pid, "metadata")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        tasks = await scheduler.tick()
        await asyncio.sleep(0)
        assert len(tasks) == 2
        assert set(scheduler.in_flight) == {"p1", "p2"}
        assert scheduler.capacity == 0
        queued = [job for job in api.jobs.values() if job.status == JobStatus.QUEUED]
        assert [job.project_id for job in queued] == ["p3"]

        assert await scheduler.tick() == []

        dispatcher.release.set()
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert scheduler.in_flight == {}
    assert sorted(call[0] for call in api.job_status_calls) == ["job-1", "job-2"]


def test_tick_creates_missing_jobs(api, settings):
    _eligible(api, 2, status=ProjectStatus.PROCESS_IMAGES_GENERATION)
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        tasks = await scheduler.tick()
        dispatcher.release.set()
        await asyncio.gather(*tasks)
        return tasks

    tasks = asyncio.run(scenario())
    assert len(tasks) == 2
    assert sorted(job.type for job in api.jobs.values()) == ["images", "images"]
    assert all(job.status == JobStatus.DONE for job in api.jobs.values())


def test_project_never_has_two_tasks_in_flight(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        first = await scheduler.tick()
        # A second queued job for the same project must not start.
        api.add_job("p1", "metadata")
        for _ in range(3):
            assert await scheduler.tick() == []
            assert list(scheduler.in_flight) == ["p1"]
        dispatcher.release.set()
        await asyncio.gather(*first)

    asyncio.run(scenario())
    assert dispatcher.max_per_project == 1
    assert dispatcher.started == ["p1"]


def test_start_task_rejects_in_flight_project(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    job_a = api.add_job("p1", "metadata")
    job_b = api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        task = scheduler.start_task(job_a)
        assert scheduler.start_task(job_b) is None
        dispatcher.release.set()
        await task

    asyncio.run(scenario())
    assert scheduler.in_flight == {}


def test_failed_dispatch_marks_job_failed_and_frees_slot(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    job = api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher(error=RuntimeError("crash"))
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        tasks = await scheduler.tick()
        dispatcher.release.set()
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert api.jobs[job.id].status == JobStatus.FAILED
    assert scheduler.in_flight == {}


def test_false_result_marks_job_failed(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    job = api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher(result=False)
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        dispatcher.release.set()
        await asyncio.gather(*(await scheduler.tick()))

    asyncio.run(scenario())
    assert api.job_status_calls == [(job.id, JobStatus.FAILED)]


def test_tick_error_ends_tick_quietly(api, settings):
    api.fail_fetch = True
    scheduler = Scheduler(api, BlockingDispatcher(), settings)

    assert asyncio.run(scheduler.tick()) == []
    assert scheduler.in_flight == {}


def test_watchdog_forces_error_without_cancelling(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    job = api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        tasks = await scheduler.tick()
        entry = scheduler.in_flight["p1"]
        await scheduler._handle_timeout(entry)
        assert not tasks[0].done()
        dispatcher.release.set()
        await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert api.status_calls[0][1:3] == (ProjectStatus.ERROR, "Task timeout")
    assert api.job_status_calls[0] == (job.id, JobStatus.FAILED)
    assert scheduler.in_flight == {}


def test_watchdog_ignores_finished_entries(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    api.add_job("p1", "metadata")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        dispatcher.release.set()
        tasks = await scheduler.tick()
        entry = scheduler.in_flight["p1"]
        await asyncio.gather(*tasks)
        await scheduler._handle_timeout(entry)

    asyncio.run(scenario())
    assert api.status_calls == []


def test_ensure_jobs_skips_unmapped_and_per_language(api):
    api.add_project("p1", ProjectStatus.PROCESS_AUDIO_VALIDATE, ["en"])
    api.add_project("p2", ProjectStatus.PROCESS_TRANSCRIPTION, ["en"])
    api.add_project("p3", ProjectStatus.NEW, ["en"])
    api.add_project("p4", ProjectStatus.PROCESS_AUDIO, ["en"])
    api.add_job("p4", "audio")

    created = asyncio.run(ensure_jobs_for_projects(api, list(api.projects.values())))

    assert created == 1
    assert [(job.project_id, job.type) for job in api.jobs.values()] == [
        ("p4", "audio"),
        ("p3", "script"),
    ]


def test_claim_next_jobs_skips_busy_projects(api):
    _eligible(api, 3)
    for pid in ("p1", "p2", "p3"):
        api.add_job(pid, "metadata")

    claimed = asyncio.run(claim_next_jobs(api, 2, busy_projects={"p1"}))

    assert [job.project_id for job in claimed] == ["p2"]


def test_scheduler_loop_start_stop(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en"])
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        dispatcher.release = asyncio.Event()
        dispatcher.release.set()
        await scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

    asyncio.run(scenario())
    assert scheduler.running is False
    assert dispatcher.started
    assert scheduler.snapshot()["in_flight"] == []


def test_verify_health_retries_then_fails(api, settings, monkeypatch):
    api.healthy = False
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr("pipeline_daemon.jobs.scheduler.asyncio.sleep", fake_sleep)
    assert asyncio.run(verify_health(api, settings, attempts=3)) is False
    assert sleeps == [0.5, 0.5, 0.5]


def test_outdated_queued_jobs_do_not_block_other_projects(api, settings):
    api.add_project("p1", ProjectStatus.PROCESS_METADATA, ["en", "es"])
    outdated = [
        api.add_job("p1", "transcription", payload={"languageCode": code}) for code in ("en", "es")
    ]
    api.add_project("p2", ProjectStatus.PROCESS_SCRIPT, ["en"])
    api.add_job("p2", "script")
    dispatcher = BlockingDispatcher()
    scheduler = Scheduler(api, dispatcher, settings.model_copy(update={"max_concurrency": 1}))

    async def scenario():
        dispatcher.release = asyncio.Event()
        dispatcher.release.set()
        for _ in range(2):
            await asyncio.gather(*(await scheduler.tick()))

    asyncio.run(scenario())
    assert dispatcher.started == ["p2", "p1"]
    metadata = [job for job in api.jobs.values() if job.type == "metadata"]
    assert [job.status for job in metadata] == [JobStatus.DONE]
    assert all(api.jobs[job.id].status == JobStatus.QUEUED for job in outdated)


def test_per_language_transcription_jobs_run_in_turn(api, dispatcher, generators, settings, workspace_for):
    api.add_project("p1", ProjectStatus.PROCESS_TRANSCRIPTION, ["en", "es"])
    ws = workspace_for("p1")
    for code in ("en", "es"):
        path = placeholders.write_silent_wav(os.path.join(ws.language_dir(code), "voice.wav"), 0.1)
        api.final_voiceovers.setdefault("p1", {})[code] = FinalVoiceover(local_path=path)
        api.add_job("p1", "transcription", payload={"languageCode": code})
    scheduler = Scheduler(api, dispatcher, settings)

    async def scenario():
        for _ in range(2):
            tasks = await scheduler.tick()
            assert len(tasks) == 1
            await asyncio.gather(*tasks)

    asyncio.run(scenario())
    assert generators.called("transcribe") == ["en", "es"]
    assert api.statuses("p1") == [ProjectStatus.PROCESS_TRANSCRIPTION, ProjectStatus.PROCESS_METADATA]
    assert all(job.status == JobStatus.DONE for job in api.jobs.values())
