"""Severity-conditioned synthesis policies.

These fill report fields when no provider supplies them, and build the whole
raw result for the local fallback. Every policy takes an explicit
`numpy.random.Generator`; nothing here touches a global random state, so tests
pin behaviour with `np.random.default_rng(seed)`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import numpy as np

from XRAY.shared.report_contract import (
    CURRENCY,
    IMAGE_QUALITIES,
    SEVERITIES,
    CostBreakdownItem,
    EstimatedCost,
    FollowUpVisit,
    RawResult,
)


SEVERITY_WEIGHTS: Tuple[float, ...] = (0.40, 0.35, 0.20, 0.05)

BASE_CONFIDENCE: Dict[str, int] = {"low": 85, "medium": 80, "high": 90, "critical": 95}
CONFIDENCE_FLOOR = 60
CONFIDENCE_CEIL = 99

# Inclusive (low, high) sample sizes per severity.
RECOMMENDATION_COUNTS: Dict[str, Tuple[int, int]] = {
    "low": (2, 4),
    "medium": (2, 4),
    "high": (3, 5),
    "critical": (4, 6),
}
FINDING_COUNTS: Dict[str, Tuple[int, int]] = {
    "low": (1, 3),
    "medium": (1, 3),
    "high": (2, 4),
    "critical": (3, 5),
}
RISK_FACTOR_COUNT = (1, 3)
PREVENTIVE_MEASURE_COUNT = (5, 8)
COST_BREAKDOWN_COUNT = (1, 2)


RECOMMENDATIONS: Dict[str, List[str]] = {
    "low": [
        "Brush twice daily with a fluoride toothpaste using proper technique",
        "Floss daily to clean between the teeth",
        "Rinse with an antibacterial mouthwash",
        "Limit sweets and carbonated drinks",
        "Schedule a dental check-up every 6 months",
        "Have periodic scaling and polishing",
        "Drink enough water every day",
    ],
    "medium": [
        "Treat gingivitis with a local antibiotic",
        "Have deep subgingival scaling",
        "Wear a night guard against teeth grinding",
        "Supplement calcium and vitamin D",
        "Avoid biting hard objects and very hot or cold food",
        "Massage the gums gently every day",
        "Schedule a dental check-up every 3 months",
    ],
    "high": [
        "Start root canal treatment immediately",
        "Extract the wisdom tooth to avoid complications",
        "Protect weakened teeth with porcelain crowns",
        "Undergo intensive periodontal treatment",
        "Take antibiotics as prescribed by the dentist",
        "Repeat X-ray examinations periodically",
        "Return for a follow-up visit in 1-2 weeks",
    ],
    "critical": [
        "Seek emergency treatment within 24-48 hours",
        "Take strong antibiotics as prescribed by the dentist",
        "Surgical removal of infected tissue may be required",
        "Monitor closely for systemic complications",
        "Consider implant placement after treatment",
        "Coordinate multi-specialty treatment if needed",
        "Return for weekly follow-up visits during the first phase",
    ],
}

FINDINGS: Dict[str, List[str]] = {
    "low": [
        "Light plaque along the gum line",
        "Early calculus formation",
        "Mild localized gingivitis",
        "Early-stage caries (D1)",
        "Mild enamel wear from friction",
        "Small gaps between teeth",
        "Mild gum recession on 1-2 teeth",
    ],
    "medium": [
        "Moderate caries (D2) on a molar",
        "Early periodontitis",
        "Heavy calculus build-up along the gum line",
        "Slightly impacted wisdom tooth",
        "Enamel wear from night-time grinding",
        "Moderate gum recession on several teeth",
        "Widespread gingivitis",
    ],
    "high": [
        "Deep caries (D3) close to the pulp",
        "Severe periodontitis with deep pockets",
        "Acute pulpitis",
        "Wisdom tooth affecting the adjacent tooth",
        "Severe acid erosion",
        "Severe gum recession exposing roots",
        "Acute periodontal abscess",
    ],
    "critical": [
        "Necrotic pulpitis",
        "Tooth abscess spreading into the jaw bone",
        "End-stage periodontitis",
        "Grade 3 tooth mobility",
        "Spreading maxillofacial infection",
        "Severe alveolar bone loss",
        "Spreading gum necrosis",
    ],
}

RISK_FACTORS: Dict[str, List[str]] = {
    "low": [
        "Irregular oral hygiene",
        "High sugar intake",
        "No flossing",
        "Low water intake",
    ],
    "medium": [
        "Smoking",
        "Prolonged stress",
        "Night-time teeth grinding",
        "Calcium-poor diet",
        "No regular dental check-ups",
    ],
    "high": [
        "Uncontrolled diabetes",
        "Weakened immune system",
        "Medication causing dry mouth",
        "Dental trauma",
        "Recurrent infections",
    ],
    "critical": [
        "Cardiovascular disease",
        "Spreading infection",
        "Severely compromised immunity",
        "Delayed treatment",
        "Systemic complications",
    ],
}

COSTS: Dict[str, List[Dict[str, Any]]] = {
    "low": [
        {"min": 100_000, "max": 300_000, "note": "Scaling and cleaning"},
        {"min": 200_000, "max": 500_000, "note": "Small composite filling"},
        {"min": 150_000, "max": 400_000, "note": "At-home whitening kit"},
        {"min": 50_000, "max": 150_000, "note": "Consultation and examination"},
    ],
    "medium": [
        {"min": 500_000, "max": 1_200_000, "note": "Large composite filling"},
        {"min": 1_000_000, "max": 3_000_000, "note": "Periodontitis treatment"},
        {"min": 300_000, "max": 800_000, "note": "Wisdom tooth extraction"},
        {"min": 2_000_000, "max": 4_000_000, "note": "Professional whitening"},
    ],
    "high": [
        {"min": 1_500_000, "max": 3_500_000, "note": "Complex root canal treatment"},
        {"min": 3_000_000, "max": 8_000_000, "note": "Periodontal surgery"},
        {"min": 2_000_000, "max": 5_000_000, "note": "Porcelain crown"},
        {"min": 800_000, "max": 2_000_000, "note": "Abscess treatment"},
    ],
    "critical": [
        {"min": 5_000_000, "max": 15_000_000, "note": "Dental implant"},
        {"min": 10_000_000, "max": 25_000_000, "note": "Full-arch restoration"},
        {"min": 50_000_000, "max": 120_000_000, "note": "Comprehensive orthodontics"},
        {"min": 8_000_000, "max": 20_000_000, "note": "Multi-specialty treatment"},
    ],
}

COST_BREAKDOWN: Dict[str, List[CostBreakdownItem]] = {
    "low": [
        {"treatment": "Composite filling", "cost": {"min": 200_000, "max": 500_000}, "note": "High quality composite"},
        {"treatment": "Scaling", "cost": {"min": 100_000, "max": 300_000}, "note": "Professional cleaning"},
        {"treatment": "At-home whitening", "cost": {"min": 150_000, "max": 400_000}, "note": "Safe whitening kit"},
    ],
    "medium": [
        {"treatment": "Periodontitis treatment", "cost": {"min": 1_000_000, "max": 3_000_000}, "note": "Early stage"},
        {"treatment": "Wisdom tooth extraction", "cost": {"min": 300_000, "max": 800_000}, "note": "Simple extraction"},
        {"treatment": "In-office whitening", "cost": {"min": 2_000_000, "max": 4_000_000}, "note": "Professional whitening"},
    ],
    "high": [
        {"treatment": "Root canal treatment", "cost": {"min": 500_000, "max": 1_500_000}, "note": "Complete endodontics"},
        {"treatment": "Porcelain crown", "cost": {"min": 2_000_000, "max": 5_000_000}, "note": "Premium crown"},
        {"treatment": "Periodontal surgery", "cost": {"min": 3_000_000, "max": 8_000_000}, "note": "Complex surgery"},
    ],
    "critical": [
        {"treatment": "Dental implant", "cost": {"min": 5_000_000, "max": 15_000_000}, "note": "High quality implant"},
        {"treatment": "Full-arch restoration", "cost": {"min": 10_000_000, "max": 25_000_000}, "note": "Whole arch"},
        {"treatment": "Full orthodontics", "cost": {"min": 50_000_000, "max": 120_000_000}, "note": "Comprehensive braces"},
    ],
}

FOLLOW_UP_SCHEDULES: Dict[str, List[FollowUpVisit]] = {
    "low": [
        {"type": "Routine check-up", "timeframe": "6 months", "description": "General check-up and cleaning"},
        {"type": "Follow-up", "timeframe": "3 months", "description": "Review treatment results"},
    ],
    "medium": [
        {"type": "Follow-up", "timeframe": "2 weeks", "description": "Check healing progress"},
        {"type": "Periodontal check", "timeframe": "3 months", "description": "Assess periodontal condition"},
        {"type": "Routine check-up", "timeframe": "6 months", "description": "Maintain oral health"},
    ],
    "high": [
        {"type": "Urgent follow-up", "timeframe": "1 week", "description": "Monitor treatment closely"},
        {"type": "X-ray review", "timeframe": "1 month", "description": "Evaluate treatment outcome"},
        {"type": "Follow-up", "timeframe": "3 months", "description": "Check long-term stability"},
    ],
    "critical": [
        {"type": "Daily monitoring", "timeframe": "first week", "description": "Watch for complications"},
        {"type": "Emergency follow-up", "timeframe": "3 days", "description": "Assess treatment response"},
        {"type": "Comprehensive check", "timeframe": "2 weeks", "description": "Assess overall condition"},
    ],
}

PREVENTIVE_MEASURES: List[str] = [
    "Brush twice a day with fluoride toothpaste using proper technique",
    "Floss daily to clean between the teeth",
    "Rinse with an antibacterial mouthwash",
    "Limit sweets and carbonated drinks",
    "Drink at least 2 litres of water a day",
    "Avoid smoking and limit alcohol",
    "Eat plenty of vegetables and vitamin C rich fruit",
    "Replace your toothbrush every 3 months",
    "Massage the gums gently every day",
    "Have a dental check-up every 6 months",
]

# Fallback scenarios; every severity has at least one entry.
SCENARIOS: List[Dict[str, Any]] = [
    {
        "diagnosis": "Mild caries on an upper molar",
        "severity": "low",
        "teeth_condition": "Mild caries detected on tooth 16",
        "bone_structure": "Normal bone structure",
        "gum_health": "Healthy gums",
        "root_canals": "Vital pulp",
        "cavities": ["Occlusal caries on tooth 16, 2mm deep"],
        "periodontal_status": "No signs of periodontitis",
        "immediate": ["Composite filling for tooth 16"],
        "short_term": ["Brush twice a day", "Use a fluoride toothpaste"],
        "long_term": ["Check-up every 6 months", "Professional cleaning"],
        "risk_factors": ["Poor oral hygiene", "High sugar intake"],
    },
    {
        "diagnosis": "Early periodontitis",
        "severity": "medium",
        "teeth_condition": "Teeth in good condition with calculus",
        "bone_structure": "Mild periodontal bone loss",
        "gum_health": "Slightly swollen gums that bleed easily",
        "root_canals": "Normal pulp",
        "cavities": [],
        "periodontal_status": "Early periodontitis",
        "immediate": ["Full-mouth scaling"],
        "short_term": ["Brush with correct technique", "Antibacterial rinse"],
        "long_term": ["Periodontal check every 3 months", "Maintain good oral hygiene"],
        "risk_factors": ["Poor oral hygiene", "Smoking", "Stress"],
    },
    {
        "diagnosis": "Impacted wisdom tooth requiring extraction",
        "severity": "high",
        "teeth_condition": "Lower wisdom tooth impacted at 45 degrees",
        "bone_structure": "Adequate bone thickness, no damage",
        "gum_health": "Mild inflammation around the wisdom tooth",
        "root_canals": "Root close to the nerve canal",
        "cavities": [],
        "periodontal_status": "Normal",
        "immediate": ["Cone beam CT scan", "Wisdom tooth extraction consultation"],
        "short_term": ["Extract the wisdom tooth", "Antibiotics and pain relief"],
        "long_term": ["Monitor wound healing", "Check-up after 1 week"],
        "risk_factors": ["Wisdom tooth close to the nerve canal", "Recurrent gingivitis"],
    },
    {
        "diagnosis": "Pulpitis requiring endodontic treatment",
        "severity": "high",
        "teeth_condition": "Tooth 36 has deep caries reaching the pulp",
        "bone_structure": "Periapical lesion present",
        "gum_health": "Swollen gums around the inflamed tooth",
        "root_canals": "Inflamed pulp with pus",
        "cavities": ["Deep caries on tooth 36 reaching the pulp"],
        "periodontal_status": "Localized periodontitis",
        "immediate": ["Open and drain the pulp", "Anti-inflammatory antibiotics"],
        "short_term": ["Root canal treatment over 3-4 visits", "Temporary filling"],
        "long_term": ["Porcelain crown", "X-ray review after 6 months"],
        "risk_factors": ["Untreated caries", "Poor oral hygiene"],
    },
    {
        "diagnosis": "Healthy teeth with no issues",
        "severity": "low",
        "teeth_condition": "All teeth healthy, no caries",
        "bone_structure": "Normal jaw bone structure",
        "gum_health": "Pink gums without swelling",
        "root_canals": "Healthy pulp",
        "cavities": [],
        "periodontal_status": "Healthy periodontium",
        "immediate": [],
        "short_term": ["Keep up the current oral hygiene"],
        "long_term": ["Routine check-ups", "Professional cleaning every 6 months"],
        "risk_factors": [],
    },
    {
        "diagnosis": "Acute pulpitis",
        "severity": "critical",
        "teeth_condition": "Tooth 26 with acute pulpitis and severe pain",
        "bone_structure": "Periapical bone lesion",
        "gum_health": "Swollen gums with pus",
        "root_canals": "Necrotic, infected pulp",
        "cavities": ["Deep caries reaching the pulp on tooth 26"],
        "periodontal_status": "Periapical abscess",
        "immediate": ["Emergency dental care", "Immediate pulp drainage", "Strong antibiotics"],
        "short_term": ["Urgent root canal treatment", "Strong pain relief"],
        "long_term": ["Porcelain crown after treatment", "Close monitoring for 3 months"],
        "risk_factors": ["Spreading infection", "Septic shock", "Tooth loss"],
    },
    {
        "diagnosis": "Severe periodontitis with bone loss",
        "severity": "high",
        "teeth_condition": "Several mobile teeth with heavy calculus",
        "bone_structure": "Severe periodontal bone loss of 40-60%",
        "gum_health": "Receding, bleeding gums with pus",
        "root_canals": "Vital but affected pulp",
        "cavities": ["Cervical caries from gum recession"],
        "periodontal_status": "Stage 3 severe periodontitis",
        "immediate": ["Full-mouth deep scaling", "Antibiotic therapy"],
        "short_term": ["Periodontal surgery", "Periodontal bone graft"],
        "long_term": ["Periodontal maintenance", "Possible extraction and implants"],
        "risk_factors": ["Permanent tooth loss", "Systemic infection", "Cardiovascular disease"],
    },
    {
        "diagnosis": "Crowded teeth requiring orthodontics",
        "severity": "medium",
        "teeth_condition": "Crowded, irregular teeth",
        "bone_structure": "Normal jaw bone",
        "gum_health": "Healthy gums that are hard to clean",
        "root_canals": "Normal pulp",
        "cavities": ["Mild caries from difficult cleaning"],
        "periodontal_status": "Mild gingivitis from difficult cleaning",
        "immediate": ["Thorough oral hygiene"],
        "short_term": ["Orthodontic consultation", "Orthodontic treatment planning"],
        "long_term": ["Braces for 18-24 months", "Retention after braces"],
        "risk_factors": ["Caries from difficult cleaning", "Recurrent gingivitis"],
    },
    {
        "diagnosis": "Fractured tooth from trauma",
        "severity": "high",
        "teeth_condition": "Upper incisor fractured at one third of the crown",
        "bone_structure": "Alveolar bone intact",
        "gum_health": "Slightly injured gums",
        "root_canals": "Pulp possibly damaged",
        "cavities": [],
        "periodontal_status": "Normal",
        "immediate": ["Pulp vitality test", "Protect the pulp"],
        "short_term": ["Composite or veneer restoration", "Monitor the pulp"],
        "long_term": ["Possible root canal treatment", "Aesthetic porcelain crown"],
        "risk_factors": ["Pulp necrosis", "Infection", "Aesthetic loss"],
    },
    {
        "diagnosis": "Dry mouth with multiple caries",
        "severity": "medium",
        "teeth_condition": "Multiple carious teeth with weak enamel",
        "bone_structure": "Normal bone",
        "gum_health": "Dry, easily irritated gums",
        "root_canals": "Some pulps affected",
        "cavities": ["Caries at multiple sites", "Cervical caries"],
        "periodontal_status": "Mild gingivitis from dry mouth",
        "immediate": ["Prioritized caries treatment", "Stimulate saliva"],
        "short_term": ["Fillings at multiple sites", "Special mouthwash"],
        "long_term": ["Treat the cause of dry mouth", "Long-term enamel protection"],
        "risk_factors": ["Medication causing dry mouth", "Systemic disease", "Advanced age"],
    },
]


def _bucket(table: Dict[str, Any], severity: str) -> Any:
    return table.get(severity, table["medium"])


def _sample(items: Sequence[Any], count_range: Tuple[int, int], rng: np.random.Generator) -> List[Any]:
    """Sample without replacement; size drawn from the inclusive range."""

    low, high = count_range
    count = int(rng.integers(low, high + 1))
    count = max(1, min(count, len(items)))
    idxs = rng.choice(len(items), size=count, replace=False)
    return [items[int(i)] for i in idxs]


def classify_severity(rng: np.random.Generator) -> str:
    idx = int(rng.choice(len(SEVERITIES), p=SEVERITY_WEIGHTS))
    return SEVERITIES[idx]


def select_recommendations(severity: str, rng: np.random.Generator) -> List[str]:
    return _sample(_bucket(RECOMMENDATIONS, severity), _bucket(RECOMMENDATION_COUNTS, severity), rng)


def select_findings(severity: str, rng: np.random.Generator) -> List[str]:
    return _sample(_bucket(FINDINGS, severity), _bucket(FINDING_COUNTS, severity), rng)


def select_risk_factors(severity: str, rng: np.random.Generator) -> List[str]:
    return _sample(_bucket(RISK_FACTORS, severity), RISK_FACTOR_COUNT, rng)


def select_preventive_measures(rng: np.random.Generator) -> List[str]:
    return _sample(PREVENTIVE_MEASURES, PREVENTIVE_MEASURE_COUNT, rng)


def select_cost_breakdown(severity: str, rng: np.random.Generator) -> List[CostBreakdownItem]:
    picked = _sample(_bucket(COST_BREAKDOWN, severity), COST_BREAKDOWN_COUNT, rng)
    return [
        {"treatment": p["treatment"], "cost": dict(p["cost"]), "note": p["note"]}  # type: ignore[typeddict-item]
        for p in picked
    ]


def follow_up_schedule(severity: str) -> List[FollowUpVisit]:
    return [dict(v) for v in _bucket(FOLLOW_UP_SCHEDULES, severity)]  # type: ignore[misc]


def estimate_cost(severity: str, rng: np.random.Generator) -> EstimatedCost:
    bucket = _bucket(COSTS, severity)
    picked = bucket[int(rng.integers(0, len(bucket)))]
    low, high = int(picked["min"]), int(picked["max"])
    return {"min": min(low, high), "max": max(low, high), "currency": CURRENCY}


def estimate_confidence(severity: str, findings_count: int, rng: np.random.Generator) -> int:
    """Confidence on the 0-100 scale, always within [60, 99]."""

    base = BASE_CONFIDENCE.get(severity, BASE_CONFIDENCE["medium"])
    jitter = int(rng.integers(-5, 5))
    bonus = min(max(0, int(findings_count)) * 2, 10)
    return int(min(max(base + jitter + bonus, CONFIDENCE_FLOOR), CONFIDENCE_CEIL))


def pick_image_quality(rng: np.random.Generator) -> str:
    return IMAGE_QUALITIES[int(rng.integers(0, len(IMAGE_QUALITIES)))]


def _random_annotation(label: str, rng: np.random.Generator) -> Dict[str, Any]:
    return {
        "label": label,
        "x": int(rng.integers(50, 450)),
        "y": int(rng.integers(50, 350)),
        "width": 40,
        "height": 30,
        "confidence": 0.85,
        "description": "Abnormality that needs attention",
    }


def synthesize_raw_result(rng: np.random.Generator) -> RawResult:
    """Build a complete local result (the terminal step of the fallback chain)."""

    severity = classify_severity(rng)
    candidates = [s for s in SCENARIOS if s["severity"] == severity]
    scenario = candidates[int(rng.integers(0, len(candidates)))]
    findings = select_findings(severity, rng)

    cavities = list(scenario["cavities"])
    return {
        "diagnosis": scenario["diagnosis"],
        "severity": severity,
        "confidence": estimate_confidence(severity, len(findings), rng) / 100.0,
        "key_findings": findings,
        "detailed_findings": {
            "teeth_condition": scenario["teeth_condition"],
            "bone_structure": scenario["bone_structure"],
            "gum_health": scenario["gum_health"],
            "root_canals": scenario["root_canals"],
            "cavities": cavities,
            "periodontal_status": scenario["periodontal_status"],
        },
        "treatment_plan": {
            "immediate": list(scenario["immediate"]),
            "short_term": list(scenario["short_term"]),
            "long_term": list(scenario["long_term"]),
        },
        "recommendations": select_recommendations(severity, rng),
        "risk_factors": list(scenario["risk_factors"]) or select_risk_factors(severity, rng),
        "follow_up_required": severity != "low",
        "estimated_cost": estimate_cost(severity, rng),
        "annotations": [_random_annotation(cavities[0] if cavities else "Area of concern", rng)],
    }
