import pytest

from warmer.jobs.job import FailReason, Job, JobStateError, JobStatus


def test_job_decomposes_url():
    job = Job(1, "https://Shop.Test:8443/catalog/product?id=5&x=1", 5, "product", "3")

    assert job.url_scheme == "https"
    assert job.url_host == "shop.test:8443"
    assert job.url_location == "/catalog/product?id=5&x=1"
    assert job.customer_group == "3"
    assert not job.is_anonymous


def test_job_without_customer_group_is_anonymous():
    job = Job(2, "http://shop.test", 1, "cms_page", "")

    assert job.customer_group is None
    assert job.is_anonymous
    assert job.url_location == "/"


def test_job_rejects_relative_url():
    with pytest.raises(ValueError):
        Job(3, "/product/1", 1, "product")


def test_completed_job_is_immutable(make_job):
    job = make_job()
    assert job.status is JobStatus.PENDING

    job.mark_completed(204, 0.25, already_warm=True)

    assert job.is_completed
    assert job.status_code == 204
    assert job.transfer_time == 0.25
    assert job.already_warm is True

    with pytest.raises(JobStateError):
        job.mark_failed(FailReason.TIMEOUT)
    with pytest.raises(JobStateError):
        job.mark_completed(200)

    assert job.is_completed
    assert job.status_code == 204


def test_failed_job_keeps_reason_and_code(make_job):
    job = make_job()
    job.mark_failed(FailReason.UNAVAILABLE, 503, 1.5)

    assert job.is_failed
    assert job.fail_reason is FailReason.UNAVAILABLE
    assert job.status_code == 503

    with pytest.raises(JobStateError):
        job.mark_completed(200)
