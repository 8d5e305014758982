from hospital_api.scripts.seed_doctors import DEFAULT_DOCTORS, seed_doctors


async def test_seed_is_rerunnable(repos):
    assert await seed_doctors(repos) == len(DEFAULT_DOCTORS)
    assert await seed_doctors(repos) == 0

    doctors = await repos.doctors.list()
    assert sorted(d.contact_email for d in doctors) == sorted(d.contactEmail for d in DEFAULT_DOCTORS)
    assert all(d.identity_uid is None for d in doctors)
