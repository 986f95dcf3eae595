"""
Delhi ward registry and seeded environmental history
Used to bootstrap a fresh store with 12 months of plausible observations and recent alerts
"""

import math
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from canopy_intelligence import DEFAULT_POLICY, PolicyConfig, VegetationIndexEngine

DELHI_WARDS = [
    {'ward_number': 1, 'name': 'Narela', 'zone': 'North Delhi', 'area_sq_km': 42.0, 'population': 120000, 'lat': 28.8528, 'lng': 77.0969},
    {'ward_number': 2, 'name': 'Alipur', 'zone': 'North Delhi', 'area_sq_km': 35.5, 'population': 95000, 'lat': 28.7960, 'lng': 77.1350},
    {'ward_number': 3, 'name': 'Rohini Zone I', 'zone': 'North West Delhi', 'area_sq_km': 28.0, 'population': 180000, 'lat': 28.7410, 'lng': 77.0730},
    {'ward_number': 4, 'name': 'Rohini Zone II', 'zone': 'North West Delhi', 'area_sq_km': 25.0, 'population': 165000, 'lat': 28.7280, 'lng': 77.0980},
    {'ward_number': 5, 'name': 'Shalimar Bagh', 'zone': 'North West Delhi', 'area_sq_km': 12.0, 'population': 140000, 'lat': 28.7190, 'lng': 77.1540},
    {'ward_number': 6, 'name': 'Wazirpur', 'zone': 'North West Delhi', 'area_sq_km': 8.5, 'population': 85000, 'lat': 28.6970, 'lng': 77.1650},
    {'ward_number': 7, 'name': 'Model Town', 'zone': 'North Delhi', 'area_sq_km': 10.0, 'population': 125000, 'lat': 28.7150, 'lng': 77.1920},
    {'ward_number': 8, 'name': 'Sadar Bazaar', 'zone': 'Central Delhi', 'area_sq_km': 6.2, 'population': 95000, 'lat': 28.6571, 'lng': 77.2078},
    {'ward_number': 9, 'name': 'Chandni Chowk', 'zone': 'Central Delhi', 'area_sq_km': 5.8, 'population': 88000, 'lat': 28.6562, 'lng': 77.2306},
    {'ward_number': 10, 'name': 'Civil Lines', 'zone': 'North Delhi', 'area_sq_km': 15.0, 'population': 75000, 'lat': 28.6820, 'lng': 77.2230},
    {'ward_number': 11, 'name': 'Karol Bagh', 'zone': 'Central Delhi', 'area_sq_km': 7.5, 'population': 150000, 'lat': 28.6519, 'lng': 77.1886},
    {'ward_number': 12, 'name': 'Rajinder Nagar', 'zone': 'Central Delhi', 'area_sq_km': 6.0, 'population': 95000, 'lat': 28.6430, 'lng': 77.1820},
    {'ward_number': 13, 'name': 'Patel Nagar', 'zone': 'West Delhi', 'area_sq_km': 8.0, 'population': 110000, 'lat': 28.6580, 'lng': 77.1550},
    {'ward_number': 14, 'name': 'Rajouri Garden', 'zone': 'West Delhi', 'area_sq_km': 10.5, 'population': 145000, 'lat': 28.6490, 'lng': 77.1220},
    {'ward_number': 15, 'name': 'Dwarka', 'zone': 'South West Delhi', 'area_sq_km': 58.0, 'population': 250000, 'lat': 28.5921, 'lng': 77.0460},
    {'ward_number': 16, 'name': 'Najafgarh', 'zone': 'South West Delhi', 'area_sq_km': 68.0, 'population': 180000, 'lat': 28.6093, 'lng': 76.9796},
    {'ward_number': 17, 'name': 'Janakpuri', 'zone': 'West Delhi', 'area_sq_km': 18.0, 'population': 195000, 'lat': 28.6219, 'lng': 77.0870},
    {'ward_number': 18, 'name': 'Tilak Nagar', 'zone': 'West Delhi', 'area_sq_km': 7.5, 'population': 125000, 'lat': 28.6400, 'lng': 77.0950},
    {'ward_number': 19, 'name': 'Vikaspuri', 'zone': 'West Delhi', 'area_sq_km': 12.0, 'population': 165000, 'lat': 28.6350, 'lng': 77.0680},
    {'ward_number': 20, 'name': 'Uttam Nagar', 'zone': 'South West Delhi', 'area_sq_km': 8.0, 'population': 180000, 'lat': 28.6200, 'lng': 77.0590},
    {'ward_number': 21, 'name': 'Mayapuri', 'zone': 'West Delhi', 'area_sq_km': 9.0, 'population': 95000, 'lat': 28.6380, 'lng': 77.1180},
    {'ward_number': 22, 'name': 'Connaught Place', 'zone': 'New Delhi', 'area_sq_km': 4.5, 'population': 45000, 'lat': 28.6315, 'lng': 77.2167},
    {'ward_number': 23, 'name': 'India Gate', 'zone': 'New Delhi', 'area_sq_km': 8.0, 'population': 35000, 'lat': 28.6129, 'lng': 77.2295},
    {'ward_number': 24, 'name': 'Lodhi Colony', 'zone': 'South Delhi', 'area_sq_km': 12.0, 'population': 85000, 'lat': 28.5918, 'lng': 77.2273},
    {'ward_number': 25, 'name': 'Defence Colony', 'zone': 'South Delhi', 'area_sq_km': 10.0, 'population': 95000, 'lat': 28.5742, 'lng': 77.2311},
    {'ward_number': 26, 'name': 'Lajpat Nagar', 'zone': 'South Delhi', 'area_sq_km': 8.5, 'population': 120000, 'lat': 28.5678, 'lng': 77.2433},
    {'ward_number': 27, 'name': 'Greater Kailash', 'zone': 'South Delhi', 'area_sq_km': 15.0, 'population': 110000, 'lat': 28.5494, 'lng': 77.2432},
    {'ward_number': 28, 'name': 'Saket', 'zone': 'South Delhi', 'area_sq_km': 18.0, 'population': 145000, 'lat': 28.5244, 'lng': 77.2090},
    {'ward_number': 29, 'name': 'Mehrauli', 'zone': 'South Delhi', 'area_sq_km': 25.0, 'population': 165000, 'lat': 28.5183, 'lng': 77.1860},
    {'ward_number': 30, 'name': 'Vasant Kunj', 'zone': 'South Delhi', 'area_sq_km': 22.0, 'population': 175000, 'lat': 28.5275, 'lng': 77.1547},
    {'ward_number': 31, 'name': 'RK Puram', 'zone': 'South Delhi', 'area_sq_km': 14.0, 'population': 135000, 'lat': 28.5663, 'lng': 77.1780},
    {'ward_number': 32, 'name': 'Shahdara North', 'zone': 'East Delhi', 'area_sq_km': 20.0, 'population': 225000, 'lat': 28.6823, 'lng': 77.2878},
    {'ward_number': 33, 'name': 'Shahdara South', 'zone': 'East Delhi', 'area_sq_km': 18.0, 'population': 195000, 'lat': 28.6650, 'lng': 77.2920},
    {'ward_number': 34, 'name': 'Preet Vihar', 'zone': 'East Delhi', 'area_sq_km': 12.0, 'population': 165000, 'lat': 28.6390, 'lng': 77.2940},
    {'ward_number': 35, 'name': 'Mayur Vihar', 'zone': 'East Delhi', 'area_sq_km': 15.0, 'population': 185000, 'lat': 28.6093, 'lng': 77.2937},
    {'ward_number': 36, 'name': 'Patparganj', 'zone': 'East Delhi', 'area_sq_km': 14.0, 'population': 155000, 'lat': 28.6270, 'lng': 77.3080},
    {'ward_number': 37, 'name': 'Laxmi Nagar', 'zone': 'East Delhi', 'area_sq_km': 8.5, 'population': 175000, 'lat': 28.6357, 'lng': 77.2786},
    {'ward_number': 38, 'name': 'Vivek Vihar', 'zone': 'East Delhi', 'area_sq_km': 10.0, 'population': 145000, 'lat': 28.6650, 'lng': 77.3150},
    {'ward_number': 39, 'name': 'Dilshad Garden', 'zone': 'North East Delhi', 'area_sq_km': 11.0, 'population': 195000, 'lat': 28.6830, 'lng': 77.3190},
    {'ward_number': 40, 'name': 'Seelampur', 'zone': 'North East Delhi', 'area_sq_km': 6.0, 'population': 210000, 'lat': 28.6750, 'lng': 77.2680},
    {'ward_number': 41, 'name': 'Mustafabad', 'zone': 'North East Delhi', 'area_sq_km': 8.0, 'population': 185000, 'lat': 28.6960, 'lng': 77.2580},
    {'ward_number': 42, 'name': 'Karawal Nagar', 'zone': 'North East Delhi', 'area_sq_km': 15.0, 'population': 175000, 'lat': 28.7230, 'lng': 77.2750},
    {'ward_number': 43, 'name': 'Burari', 'zone': 'North Delhi', 'area_sq_km': 20.0, 'population': 155000, 'lat': 28.7590, 'lng': 77.2010},
    {'ward_number': 44, 'name': 'Timarpur', 'zone': 'North Delhi', 'area_sq_km': 9.0, 'population': 95000, 'lat': 28.7050, 'lng': 77.2150},
    {'ward_number': 45, 'name': 'Adarsh Nagar', 'zone': 'North Delhi', 'area_sq_km': 7.5, 'population': 115000, 'lat': 28.7180, 'lng': 77.1700},
    {'ward_number': 46, 'name': 'Okhla', 'zone': 'South East Delhi', 'area_sq_km': 16.0, 'population': 175000, 'lat': 28.5560, 'lng': 77.2760},
    {'ward_number': 47, 'name': 'Kalkaji', 'zone': 'South East Delhi', 'area_sq_km': 12.0, 'population': 145000, 'lat': 28.5385, 'lng': 77.2590},
]

GREEN_ZONES = ('Najafgarh', 'Narela', 'Alipur', 'Burari', 'Mehrauli', 'Vasant Kunj')
COMMERCIAL_ZONES = ('Connaught Place', 'Karol Bagh', 'Sadar Bazaar', 'Chandni Chowk')
INDUSTRIAL_ZONES = ('Mayapuri', 'Wazirpur', 'Okhla', 'Patparganj')

# (green cover base, span), (heat index base, span) per zone character
ZONE_PROFILES = {
    'green': ((35, 15), (45, 20)),
    'commercial': ((8, 8), (80, 15)),
    'industrial': ((12, 10), (75, 15)),
    'mixed': ((18, 15), (60, 25)),
}

HISTORY_MONTHS = 12

# (alert_type, severity, message template) for synthetic detection alerts
ALERT_TEMPLATES = (
    ('tree_loss', 'critical', "Illegal felling detected: {count} mature trees removed near {location}"),
    ('tree_loss', 'high', "Vegetation clearing observed: {count} trees at risk in {location}"),
    ('heat_spike', 'critical', "Surface temperature spike: {temp}°C recorded in {location}"),
    ('heat_spike', 'high', "Heat stress alert: {temp}°C exceeds safe threshold in {location}"),
    ('risk_alert', 'critical', "Heat vulnerability index exceeds 85: Urgent cooling intervention needed"),
    ('risk_alert', 'high', "Risk score elevated to {score}/100: Enhanced monitoring required"),
    ('plantation_needed', 'medium', "Green deficit zone identified: {location} requires {count}+ tree plantation"),
    ('vegetation_change', 'high', "NDVI dropped by {percent}% - possible deforestation detected"),
)

SEEDED_ALERT_COUNT = 25
ALERT_WINDOW_HOURS = 48


def zone_character(ward_name: str) -> str:
    """Classify a ward as green, commercial, industrial or mixed"""
    if any(zone in ward_name for zone in GREEN_ZONES):
        return 'green'
    elif any(zone in ward_name for zone in COMMERCIAL_ZONES):
        return 'commercial'
    elif any(zone in ward_name for zone in INDUSTRIAL_ZONES):
        return 'industrial'
    return 'mixed'


def ward_polygon(lat: float, lng: float, area_sq_km: float) -> Dict:
    """Square GeoJSON polygon of roughly the ward's area centred on its centroid"""
    half_side = math.sqrt(area_sq_km) * 0.009 / 2
    return {
        'type': 'Polygon',
        'coordinates': [[
            [lng - half_side, lat - half_side],
            [lng + half_side, lat - half_side],
            [lng + half_side, lat + half_side],
            [lng - half_side, lat + half_side],
            [lng - half_side, lat - half_side],
        ]],
    }


def ward_records() -> List[Dict]:
    """Ward rows ready for insertion, with boundary and centroid geometry"""
    return [
        {
            'ward_number': ward['ward_number'],
            'name': ward['name'],
            'zone': ward['zone'],
            'area_sq_km': ward['area_sq_km'],
            'population': ward['population'],
            'boundary': ward_polygon(ward['lat'], ward['lng'], ward['area_sq_km']),
            'centroid': {'type': 'Point', 'coordinates': [ward['lng'], ward['lat']]},
        }
        for ward in DELHI_WARDS
    ]


def monthly_dates(today: date, months: int = HISTORY_MONTHS) -> List[str]:
    """ISO dates for the last `months` months, oldest first, ending today"""
    dates = []
    for offset in range(months - 1, -1, -1):
        month_index = today.year * 12 + (today.month - 1) - offset
        year, month = divmod(month_index, 12)
        dates.append(date(year, month + 1, min(today.day, 28)).isoformat())
    dates[-1] = today.isoformat()
    return dates


def environmental_baseline(ward_name: str, rng) -> Dict:
    """
    Draw a ward's baseline green cover and heat profile

    Args:
        ward_name: Ward name, used to pick the zone profile
        rng: Random source with a .random() method

    Returns:
        Dictionary of baseline indicators
    """
    (green_base, green_span), (heat_base, heat_span) = ZONE_PROFILES[zone_character(ward_name)]
    green_cover = green_base + rng.random() * green_span
    heat_index = heat_base + rng.random() * heat_span

    # Roughly linear green cover -> NDVI relationship
    ndvi = (green_cover / 100) * 0.7 + 0.05
    land_surface_temp = 30 + (heat_index / 100) * 18

    return {
        'ndvi': round(ndvi, 4),
        'evi': round(ndvi * 0.85, 4),
        'green_cover_percent': round(green_cover, 2),
        'land_surface_temp': round(land_surface_temp, 2),
        'ambient_temp': round(land_surface_temp - 5 - rng.random() * 3, 2),
        'humidity': round(30 + rng.random() * 40, 2),
        'heat_index': int(math.floor(heat_index + 0.5)),
        'uhi_intensity': round((heat_index - 50) / 10, 2),
    }


def seed_risk_score(heat_index: float, green_cover_percent: float, noise: float,
                    target_green_cover: float = DEFAULT_POLICY.target_green_cover) -> int:
    """
    Risk score used only when seeding history

    Weighs heat at 0.35 and vegetation deficit at 1.5 per point plus up to
    10 points of noise. Distinct from both the assessment and ranking scores.
    """
    score = int(math.floor(heat_index * 0.35 + (target_green_cover - green_cover_percent) * 1.5
                           + noise * 10 + 0.5))
    return min(100, score)


def ward_history(ward: Dict, ward_id: str, dates: List[str], rng,
                 policy: Optional[PolicyConfig] = None) -> Tuple[List[Dict], List[Dict], Dict]:
    """
    Build monthly NDVI and heat records plus the latest risk assessment for one ward

    Args:
        ward: Ward registry entry
        ward_id: Store id of the ward
        dates: Observation dates, oldest first
        rng: Random source with a .random() method
        policy: Supplies the green cover target for the risk record

    Returns:
        Tuple of (ndvi_records, heat_records, risk_record)
    """
    policy = policy or DEFAULT_POLICY
    baseline = environmental_baseline(ward['name'], rng)

    ndvi_records = []
    heat_records = []
    for index, observation_date in enumerate(dates):
        # NDVI peaks in the monsoon, heat in May-June
        ndvi_season = math.sin((index - 3) * math.pi / 6) * 0.05
        heat_season = math.sin((index - 1) * math.pi / 6) * 15

        ndvi_value = max(-1.0, min(1.0, baseline['ndvi'] + ndvi_season + (rng.random() - 0.5) * 0.03))
        ndvi_records.append({
            'ward_id': ward_id,
            'observation_date': observation_date,
            'ndvi_value': round(ndvi_value, 4),
            'evi_value': round(max(-1.0, min(1.0, baseline['evi'] + ndvi_season * 0.8 + (rng.random() - 0.5) * 0.02)), 4),
            'green_cover_percent': round(max(0.0, min(100.0, baseline['green_cover_percent'] + ndvi_season * 50
                                                       + (rng.random() - 0.5) * 3)), 2),
            'vegetation_density': VegetationIndexEngine.classify_density(ndvi_value),
            'satellite_source': 'Sentinel-2',
            'confidence_score': round(85 + rng.random() * 10, 2),
        })

        heat_records.append({
            'ward_id': ward_id,
            'observation_date': observation_date,
            'land_surface_temp': round(baseline['land_surface_temp'] + heat_season + (rng.random() - 0.5) * 3, 2),
            'ambient_temp': round(baseline['ambient_temp'] + heat_season + (rng.random() - 0.5) * 2, 2),
            'humidity': round(max(20.0, min(95.0, baseline['humidity'] - heat_season * 0.5 + (rng.random() - 0.5) * 10)), 2),
            'heat_index': max(0, min(100, int(math.floor(baseline['heat_index'] + heat_season * 0.5
                                                         + (rng.random() - 0.5) * 5 + 0.5)))),
            'uhi_intensity': round(baseline['uhi_intensity'] + (rng.random() - 0.5), 2),
            'thermal_comfort_index': round(50 + (baseline['heat_index'] - 50) * 0.6, 2),
            'data_source': 'MODIS',
        })

    risk_score = seed_risk_score(baseline['heat_index'], baseline['green_cover_percent'], rng.random(),
                                 policy.target_green_cover)
    if risk_score >= 80:
        priority = 'critical'
    elif risk_score >= 60:
        priority = 'high'
    elif risk_score >= 40:
        priority = 'medium'
    else:
        priority = 'low'

    vegetation_deficit = (policy.target_green_cover - baseline['green_cover_percent']) * 3
    risk_record = {
        'ward_id': ward_id,
        'assessment_date': dates[-1],
        'overall_risk_score': risk_score,
        'heat_risk_score': baseline['heat_index'],
        'vegetation_risk_score': int(math.floor(vegetation_deficit + 0.5)),
        'priority': priority,
        'risk_factors': {
            'heat': baseline['heat_index'],
            'vegetation': round(vegetation_deficit, 2),
            'urbanDensity': round(50 + rng.random() * 40, 2),
        },
        'ai_analysis': (f"{ward['name']} shows {priority} risk level with "
                        f"{baseline['green_cover_percent']:.1f}% green cover and heat index of {baseline['heat_index']}."),
        'confidence_score': 90,
    }

    return ndvi_records, heat_records, risk_record


def seed_alerts(wards: List[Dict], now: datetime, rng, count: int = SEEDED_ALERT_COUNT) -> List[Dict]:
    """
    Synthetic detection alerts spread over the last 48 hours

    Alerts detected less than 24 hours before `now` are marked active.

    Args:
        wards: Stored ward rows (id and name)
        now: Timezone-aware reference time
        rng: Random source with a .random() method
        count: Number of alerts to generate

    Returns:
        List of alert records
    """
    if not wards:
        return []

    registry = {ward['name']: ward for ward in DELHI_WARDS}
    alerts = []
    for _ in range(count):
        alert_type, severity, template = ALERT_TEMPLATES[int(rng.random() * len(ALERT_TEMPLATES))]
        ward = wards[int(rng.random() * len(wards))]
        hours_ago = int(rng.random() * ALERT_WINDOW_HOURS)

        message = template.format(
            count=int(5 + rng.random() * 50),
            temp=int(42 + rng.random() * 10),
            score=int(75 + rng.random() * 20),
            percent=int(10 + rng.random() * 25),
            location=ward['name'],
        )

        location = None
        entry = registry.get(ward['name'])
        if entry:
            location = {
                'type': 'Point',
                'coordinates': [round(entry['lng'] + (rng.random() - 0.5) * 0.01, 6),
                                round(entry['lat'] + (rng.random() - 0.5) * 0.01, 6)],
            }

        alerts.append({
            'ward_id': ward['id'],
            'alert_type': alert_type,
            'severity': severity,
            'title': f"{alert_type.replace('_', ' ').upper()} - {ward['name']}",
            'message': message,
            'location': location,
            'location_description': ward['name'],
            'detected_at': (now - timedelta(hours=hours_ago)).isoformat(),
            'is_active': hours_ago < 24,
            'detection_method': 'AI-Satellite-Analysis',
            'confidence_score': round(80 + rng.random() * 15, 2),
            'metadata': {'source': 'automated_detection', 'model_version': 'v2.1'},
        })

    return alerts
