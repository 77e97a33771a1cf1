# coursestore/content_service/main.py
from fastapi import FastAPI, HTTPException

app = FastAPI(title="Content Service (dev mock)")


def _tokens(course_id: str) -> dict:
    return {
        "three_month": f"{course_id}-3m",
        "six_month": f"{course_id}-6m",
        "nine_month": f"{course_id}-9m",
    }


COURSES = {
    course_id: {
        "id": course_id,
        "title": title,
        "price": price,
        "thumbnail_url": f"https://cdn.example.com/{course_id}.png",
        "grant_tokens": _tokens(course_id),
    }
    for course_id, title, price in [
        ("c1", "Green Card Basics", "100.00"),
        ("c2", "Family Sponsorship", "100.00"),
        ("c3", "H-1B Visa Essentials", "80.00"),
        ("c4", "Adjustment of Status", "60.00"),
        ("c5", "EB-5 Investor Visa", "120.00"),
        ("c6", "F-1 Student Visa", "90.00"),
        ("c7", "OPT and STEM OPT", "75.00"),
        ("c8", "Work Permits (EAD)", "50.00"),
        ("c9", "Naturalization Test Prep", "110.00"),
        ("c10", "Citizenship Interview Prep", "40.00"),
    ]
}

BUNDLES = {
    "b1": {
        "id": "b1",
        "title": "Family-Based Immigration",
        "price": "200.00",
        "validity_months": 12,
        "grant_token": "b1-12m",
        "course_ids": ["c2", "c4", "c8"],
    },
    "b2": {
        "id": "b2",
        "title": "Study and Work in the U.S.",
        "price": "250.00",
        "validity_months": 6,
        "grant_token": "b2-6m",
        "course_ids": ["c3", "c6", "c7"],
    },
}


@app.get("/courses/{course_id}")
def get_course(course_id: str):
    course = COURSES.get(course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


@app.get("/bundles/{bundle_id}")
def get_bundle(bundle_id: str):
    bundle = BUNDLES.get(bundle_id)
    if not bundle:
        raise HTTPException(status_code=404, detail="Bundle not found")
    return bundle
