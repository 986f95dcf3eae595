"""
Environmental scoring core for ward-level canopy monitoring
Vegetation indices, heat stress, change detection, risk assessment and plantation planning
"""

import json
import math
from dataclasses import dataclass, field, fields, replace
from typing import ClassVar, Dict, List, Optional, Tuple

import numpy as np


class CanopyValidationError(ValueError):
    """Raised when an engine input violates a precondition"""

    def __init__(self, field_name: str, message: str):
        self.field = field_name
        super().__init__(f"Invalid {field_name}: {message}")


# ============================================
# POLICY CONFIGURATION
# ============================================

DEFAULT_TREE_DENSITY = {
    'residential': 500,
    'commercial': 300,
    'industrial': 200,
    'mixed_urban': 400,
    'green_zone': 800,
    'water_body': 100,
}

# Planting plus initial care, INR per tree
DEFAULT_COST_PER_TREE = {
    'residential': 800,
    'commercial': 1200,
    'industrial': 600,
    'mixed_urban': 900,
    'green_zone': 500,
    'water_body': 1000,
}

# Species suited to Delhi conditions
DEFAULT_SPECIES = {
    'residential': ['Neem (Azadirachta indica)', 'Peepal (Ficus religiosa)', 'Jamun (Syzygium cumini)'],
    'commercial': ['Ashoka (Saraca asoca)', 'Gulmohar (Delonix regia)', 'Amaltas (Cassia fistula)'],
    'industrial': ['Arjun (Terminalia arjuna)', 'Sheesham (Dalbergia sissoo)', 'Khejri (Prosopis cineraria)'],
    'mixed_urban': ['Neem', 'Peepal', 'Banyan (Ficus benghalensis)', 'Mango (Mangifera indica)'],
    'green_zone': ['Sal (Shorea robusta)', 'Teak (Tectona grandis)', 'Bamboo (Bambusa)'],
    'water_body': ['Willow (Salix)', 'Eucalyptus', 'Poplar (Populus)'],
}


@dataclass(frozen=True)
class PolicyConfig:
    """
    Tunable policy constants shared by all engines

    The two green cover targets are separate policy figures: the heat
    mitigation target (40%) and the city plantation target (33%).
    """
    epsilon: float = 0.001
    evi_gain: float = 2.5
    evi_c1: float = 6.0
    evi_c2: float = 7.5
    evi_canopy_background: float = 1.0
    default_blue_band: float = 0.1
    rural_reference_temp: float = 28.0
    heat_mitigation_target_green_cover: float = 40.0
    target_green_cover: float = 33.0
    cooling_per_percent: float = 0.3
    trees_per_percent: float = 15.0
    co2_per_tree_tonnes: float = 0.021
    heat_reduction_per_tree: float = 0.025
    max_heat_reduction: float = 5.0
    correlation_baseline: float = -0.67
    correlation_jitter: float = 0.1
    default_land_type: str = 'mixed_urban'
    tree_density_per_sq_km: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TREE_DENSITY))
    cost_per_tree: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COST_PER_TREE))
    species: Dict[str, List[str]] = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_SPECIES.items()})
    heat_spike_threshold: int = 85
    heat_spike_critical_threshold: int = 95
    vegetation_loss_trigger: float = -0.1
    change_window_days: int = 30

    TABLE_FIELDS: ClassVar[Tuple[str, ...]] = ('tree_density_per_sq_km', 'cost_per_tree', 'species')

    @classmethod
    def from_dict(cls, overrides: Dict) -> 'PolicyConfig':
        """
        Build a policy from defaults plus overrides

        Table fields are merged per land type, scalars replace the default.

        Args:
            overrides: Mapping of field name to value

        Returns:
            PolicyConfig instance
        """
        base = cls()
        known = {f.name for f in fields(cls)}
        updates = {}
        for key, value in overrides.items():
            if key not in known:
                raise CanopyValidationError(key, "unknown policy setting")
            if key in cls.TABLE_FIELDS:
                if not isinstance(value, dict):
                    raise CanopyValidationError(key, "must be a mapping keyed by land type")
                merged = dict(getattr(base, key))
                merged.update(value)
                updates[key] = merged
            else:
                updates[key] = value

        policy = replace(base, **updates)
        policy.validate()
        return policy

    @classmethod
    def from_json(cls, path: str) -> 'PolicyConfig':
        """Load policy overrides from a JSON file"""
        with open(path, 'r', encoding='utf-8') as handle:
            overrides = json.load(handle)
        if not isinstance(overrides, dict):
            raise CanopyValidationError('policy', f"{path} must contain a JSON object")
        return cls.from_dict(overrides)

    def validate(self):
        """Check scalar settings and that every table row can produce a sane plan"""
        for f in fields(self):
            if f.name in self.TABLE_FIELDS or f.name == 'default_land_type':
                continue
            _require_finite(f.name, getattr(self, f.name))
        if self.cooling_per_percent <= 0:
            raise CanopyValidationError('cooling_per_percent', "must be greater than zero")
        if self.default_land_type not in self.tree_density_per_sq_km:
            raise CanopyValidationError('default_land_type', f"no tree density row for {self.default_land_type!r}")
        for table_name in ('tree_density_per_sq_km', 'cost_per_tree'):
            for land_type, value in getattr(self, table_name).items():
                number = _require_finite(f"{table_name}.{land_type}", value)
                if number < 0:
                    raise CanopyValidationError(f"{table_name}.{land_type}", "must not be negative")

    def resolve_land_type(self, land_type: Optional[str]) -> str:
        """Map unknown or missing land types onto the default row"""
        if land_type in self.tree_density_per_sq_km:
            return land_type
        return self.default_land_type


DEFAULT_POLICY = PolicyConfig()


# ============================================
# NUMERIC HELPERS
# ============================================

def _require_finite(field_name: str, value) -> float:
    """Coerce to float, rejecting non-numeric and non-finite values"""
    if isinstance(value, bool):
        raise CanopyValidationError(field_name, "must be a number, got a boolean")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise CanopyValidationError(field_name, f"must be a number, got {value!r}")
    if not math.isfinite(number):
        raise CanopyValidationError(field_name, f"must be finite, got {number}")
    return number


def _require_non_negative(field_name: str, value) -> float:
    number = _require_finite(field_name, value)
    if number < 0:
        raise CanopyValidationError(field_name, f"must not be negative, got {number}")
    return number


def _require_positive(field_name: str, value) -> float:
    number = _require_finite(field_name, value)
    if number <= 0:
        raise CanopyValidationError(field_name, f"must be greater than zero, got {number}")
    return number


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _ratio(numerator: float, denominator: float) -> float:
    """Divide with IEEE semantics: x/0 is +/-inf, 0/0 is 0"""
    if denominator == 0:
        if numerator == 0:
            return 0.0
        return math.copysign(math.inf, numerator)
    return numerator / denominator


# ============================================
# RESULT RECORDS
# ============================================

def _camel_case(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


class _JsonRecord:
    """Serialise dataclass results with camelCase keys"""

    JSON_NAMES: ClassVar[Dict[str, str]] = {}

    def to_dict(self) -> Dict:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, dict):
                value = dict(value)
            result[self.JSON_NAMES.get(f.name, _camel_case(f.name))] = value
        return result


@dataclass(frozen=True)
class VegetationResult(_JsonRecord):
    """Vegetation indices for a single observation"""
    ndvi: float
    evi: float
    green_cover_percent: float
    vegetation_density: str
    change_from_previous: Optional[float]


@dataclass(frozen=True)
class HeatResult(_JsonRecord):
    """Heat stress indicators for a single observation"""
    heat_index: int
    uhi_intensity: float
    thermal_comfort_index: float
    risk_category: str
    mitigation_potential: float


@dataclass(frozen=True)
class ChangeResult(_JsonRecord):
    """Vegetation change between two NDVI observations"""
    change_type: str
    change_magnitude: float
    change_rate: float
    alert_level: str
    confidence: float


@dataclass(frozen=True)
class RiskResult(_JsonRecord):
    """Weighted ward risk assessment"""
    overall_risk_score: int
    heat_risk_score: int
    vegetation_risk_score: int
    priority: str
    risk_factors: Dict[str, float]
    recommendations: Tuple[str, ...]


@dataclass(frozen=True)
class RankingRiskResult(_JsonRecord):
    """Simplified risk score used to rank wards in listings"""
    score: int
    priority: str


@dataclass(frozen=True)
class VisionResult(_JsonRecord):
    """Vision stage output: current vegetation and thermal status"""
    vegetation_status: str
    thermal_status: str
    coverage_gap: float
    priority_level: int


@dataclass(frozen=True)
class CorrelationResult(_JsonRecord):
    """Correlation stage output linking heat to vegetation deficit"""
    heat_vegetation_correlation: float
    urban_heat_amplification: float
    cooling_potential: float
    trees_per_degree: int


@dataclass(frozen=True)
class PlantationPlan(_JsonRecord):
    """Concrete plantation plan for one ward"""
    required_trees: int
    estimated_heat_reduction: float
    estimated_co2_offset: float
    estimated_cost: float
    implementation_timeline: str
    recommended_species: Tuple[str, ...]
    priority_score: int
    reasoning: str

    JSON_NAMES: ClassVar[Dict[str, str]] = {'estimated_co2_offset': 'estimatedCO2Offset'}


def _priority_tier(score: float) -> str:
    if score >= 80:
        return 'critical'
    elif score >= 60:
        return 'high'
    elif score >= 40:
        return 'medium'
    return 'low'


# ============================================
# ENGINES
# ============================================

class VegetationIndexEngine:
    """Compute NDVI/EVI, green cover and vegetation density from spectral bands"""

    # Linear NDVI -> green cover remapping, kept for compatibility with stored records
    GREEN_COVER_OFFSET = 0.1
    GREEN_COVER_SPAN = 1.1

    # Upper NDVI bound (exclusive) for each density bucket
    DENSITY_THRESHOLDS = (
        (0.1, 'barren'),
        (0.2, 'sparse'),
        (0.4, 'moderate'),
        (0.6, 'dense'),
    )

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or DEFAULT_POLICY

    @classmethod
    def classify_density(cls, ndvi: float) -> str:
        """
        Classify vegetation density from NDVI

        Boundary values belong to the higher bucket, e.g. 0.1 is sparse.
        """
        for upper, label in cls.DENSITY_THRESHOLDS:
            if ndvi < upper:
                return label
        return 'very_dense'

    def compute(self, red_band: float, nir_band: float, blue_band: Optional[float] = None,
                previous_ndvi: Optional[float] = None) -> VegetationResult:
        """
        Compute vegetation health for one observation

        Args:
            red_band: Red reflectance (0-1)
            nir_band: Near-infrared reflectance (0-1)
            blue_band: Blue reflectance, defaults to the policy value (0.1)
            previous_ndvi: Last known NDVI for the ward, if any

        Returns:
            VegetationResult
        """
        policy = self.policy
        red = _require_finite('red_band', red_band)
        nir = _require_finite('nir_band', nir_band)
        blue = policy.default_blue_band if blue_band is None else _require_finite('blue_band', blue_band)

        ndvi = _clamp(_ratio(nir - red, nir + red + policy.epsilon), -1.0, 1.0)

        evi_denominator = (nir + policy.evi_c1 * red - policy.evi_c2 * blue
                           + policy.evi_canopy_background + policy.epsilon)
        evi = _clamp(policy.evi_gain * _ratio(nir - red, evi_denominator), -1.0, 1.0)

        green_cover = _clamp(((ndvi + self.GREEN_COVER_OFFSET) / self.GREEN_COVER_SPAN) * 100, 0.0, 100.0)

        reported_ndvi = round(ndvi, 4)
        change = None
        if previous_ndvi is not None:
            previous = _require_finite('previous_ndvi', previous_ndvi)
            change = round(reported_ndvi - previous, 4)

        return VegetationResult(
            ndvi=reported_ndvi,
            evi=round(evi, 4),
            green_cover_percent=round(green_cover, 2),
            vegetation_density=self.classify_density(ndvi),
            change_from_previous=change,
        )


class HeatStressEngine:
    """Urban heat island and heat stress indicators"""

    BASE_TEMP = 25.0
    TEMP_WEIGHT = 2.5
    HUMIDITY_WEIGHT = 0.2
    GREEN_MITIGATION_WEIGHT = 0.3
    URBAN_WEIGHT = 0.15

    # Simplified UTCI approximation
    COMFORT_BASELINE = 50.0
    COMFORT_TEMP_WEIGHT = 2.0
    COMFORT_GREEN_WEIGHT = 0.3
    COMFORT_HUMIDITY_WEIGHT = 0.1

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or DEFAULT_POLICY

    @staticmethod
    def classify_risk(heat_index: float) -> str:
        if heat_index >= 85:
            return 'extreme'
        elif heat_index >= 70:
            return 'high'
        elif heat_index >= 50:
            return 'moderate'
        return 'low'

    def compute(self, land_surface_temp: float, ambient_temp: float, humidity: float,
                green_cover_percent: float, urban_density: float,
                rural_reference_temp: Optional[float] = None) -> HeatResult:
        """
        Compute heat stress for one observation

        Args:
            land_surface_temp: Land surface temperature (°C)
            ambient_temp: Air temperature (°C)
            humidity: Relative humidity (%)
            green_cover_percent: Green cover (0-100)
            urban_density: Urban density (0-100)
            rural_reference_temp: Rural baseline for UHI, defaults to policy (28°C)

        Returns:
            HeatResult
        """
        policy = self.policy
        lst = _require_finite('land_surface_temp', land_surface_temp)
        ambient = _require_finite('ambient_temp', ambient_temp)
        humidity = _require_finite('humidity', humidity)
        green = _require_finite('green_cover_percent', green_cover_percent)
        density = _require_finite('urban_density', urban_density)
        rural = (policy.rural_reference_temp if rural_reference_temp is None
                 else _require_finite('rural_reference_temp', rural_reference_temp))

        uhi_intensity = max(0.0, lst - rural)

        temp_factor = _clamp((lst - self.BASE_TEMP) * self.TEMP_WEIGHT, 0.0, 100.0)
        humidity_factor = humidity * self.HUMIDITY_WEIGHT
        green_mitigation = green * self.GREEN_MITIGATION_WEIGHT
        urban_factor = density * self.URBAN_WEIGHT
        heat_index = round_half_up(
            _clamp(temp_factor + humidity_factor - green_mitigation + urban_factor, 0.0, 100.0)
        )

        thermal_comfort = _clamp(
            self.COMFORT_BASELINE
            + (ambient - self.BASE_TEMP) * self.COMFORT_TEMP_WEIGHT
            - green * self.COMFORT_GREEN_WEIGHT
            + humidity * self.COMFORT_HUMIDITY_WEIGHT,
            0.0, 100.0
        )

        # Each 1% of green cover below target is worth 0.3°C of cooling
        green_gain = max(0.0, policy.heat_mitigation_target_green_cover - green)
        mitigation_potential = green_gain * policy.cooling_per_percent

        return HeatResult(
            heat_index=heat_index,
            uhi_intensity=round(uhi_intensity, 2),
            thermal_comfort_index=round(thermal_comfort, 2),
            risk_category=self.classify_risk(heat_index),
            mitigation_potential=round(mitigation_potential, 2),
        )


class ChangeDetectionEngine:
    """Compare two NDVI observations to detect vegetation loss or gain"""

    DAYS_PER_MONTH = 30

    # Loss magnitude above which each alert level applies
    ALERT_THRESHOLDS = (
        (0.3, 'critical'),
        (0.15, 'high'),
        (0.05, 'medium'),
    )

    BASE_CONFIDENCE = 70.0
    MAX_CONFIDENCE = 99.0

    @classmethod
    def classify_alert(cls, change_type: str, magnitude: float) -> str:
        if change_type != 'loss':
            return 'low'
        for lower, level in cls.ALERT_THRESHOLDS:
            if magnitude > lower:
                return level
        return 'low'

    @classmethod
    def detect(cls, current_ndvi: float, previous_ndvi: float, time_interval_days: float,
               threshold: float = 0.1) -> ChangeResult:
        """
        Detect vegetation change between two observations

        Confidence grows with magnitude: larger shifts are less likely to be
        sensor noise.

        Args:
            current_ndvi: Latest NDVI
            previous_ndvi: Earlier NDVI
            time_interval_days: Days between observations
            threshold: Minimum absolute change counted as loss or gain

        Returns:
            ChangeResult
        """
        current = _require_finite('current_ndvi', current_ndvi)
        previous = _require_finite('previous_ndvi', previous_ndvi)
        interval = _require_positive('time_interval_days', time_interval_days)
        threshold = _require_non_negative('threshold', threshold)

        change = current - previous
        magnitude = abs(change)
        monthly_rate = (magnitude / interval) * cls.DAYS_PER_MONTH

        if change < -threshold:
            change_type = 'loss'
        elif change > threshold:
            change_type = 'gain'
        else:
            change_type = 'stable'

        confidence = min(cls.MAX_CONFIDENCE, cls.BASE_CONFIDENCE + magnitude * 100)

        return ChangeResult(
            change_type=change_type,
            change_magnitude=round(magnitude, 4),
            change_rate=round(monthly_rate, 4),
            alert_level=cls.classify_alert(change_type, magnitude),
            confidence=round(confidence, 2),
        )


class RiskAssessmentEngine:
    """
    Combine heat, vegetation, tree loss, population, air quality and
    vulnerability into a single ward risk score

    Formula: R = 0.25·H + 0.25·V + 0.15·T + 0.15·P + 0.10·A + 0.10·U

    A separate, simpler weighting (ranking_score) is used for ward listings.
    The two encode different policy decisions and are kept apart.
    """

    WEIGHT_HEAT = 0.25
    WEIGHT_VEGETATION = 0.25
    WEIGHT_TREE_LOSS = 0.15
    WEIGHT_POPULATION = 0.15
    WEIGHT_AIR_QUALITY = 0.10
    WEIGHT_VULNERABILITY = 0.10

    VEGETATION_DEFICIT_SCALE = 3.0
    TREE_LOSS_SCALE = 5.0
    POPULATION_REFERENCE = 500.0
    AQI_REFERENCE = 300.0

    # Ranking formula weights
    RANKING_WEIGHT_HEAT = 0.35
    RANKING_WEIGHT_DEFICIT = 0.30
    RANKING_WEIGHT_TREE_LOSS = 0.20
    RANKING_WEIGHT_POPULATION = 0.15

    # (score attribute, threshold, recommendation) in output order
    RECOMMENDATION_RULES = (
        ('heat', 70, 'Urgent cooling intervention needed'),
        ('vegetation', 60, 'Priority plantation zone'),
        ('treeLoss', 50, 'Enhanced monitoring required'),
        ('population', 70, 'Focus on high-density public spaces'),
    )

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or DEFAULT_POLICY

    def assess(self, heat_index: float, green_cover_percent: float, tree_loss_rate: float,
               population_density: float, air_quality_index: float = 150,
               vulnerability_score: float = 50) -> RiskResult:
        """
        Compute the full ward risk assessment

        Args:
            heat_index: Heat stress index (0-100)
            green_cover_percent: Green cover (0-100)
            tree_loss_rate: Tree loss rate (%/yr)
            population_density: Residents per km²
            air_quality_index: AQI (default 150)
            vulnerability_score: Social vulnerability (0-100, default 50)

        Returns:
            RiskResult
        """
        heat = _clamp(_require_finite('heat_index', heat_index), 0.0, 100.0)
        green = _require_finite('green_cover_percent', green_cover_percent)
        tree_loss_rate = _require_non_negative('tree_loss_rate', tree_loss_rate)
        population_density = _require_non_negative('population_density', population_density)
        aqi = _require_non_negative('air_quality_index', air_quality_index)
        vulnerability = _clamp(_require_finite('vulnerability_score', vulnerability_score), 0.0, 100.0)

        vegetation_risk = _clamp(
            (self.policy.target_green_cover - green) * self.VEGETATION_DEFICIT_SCALE, 0.0, 100.0
        )
        tree_loss_risk = _clamp(tree_loss_rate * self.TREE_LOSS_SCALE, 0.0, 100.0)
        population_risk = _clamp((population_density / self.POPULATION_REFERENCE) * 100, 0.0, 100.0)
        air_quality_risk = _clamp((aqi / self.AQI_REFERENCE) * 100, 0.0, 100.0)

        overall = round_half_up(
            heat * self.WEIGHT_HEAT +
            vegetation_risk * self.WEIGHT_VEGETATION +
            tree_loss_risk * self.WEIGHT_TREE_LOSS +
            population_risk * self.WEIGHT_POPULATION +
            air_quality_risk * self.WEIGHT_AIR_QUALITY +
            vulnerability * self.WEIGHT_VULNERABILITY
        )
        overall = int(_clamp(overall, 0, 100))

        risk_factors = {
            'heat': heat,
            'vegetation': vegetation_risk,
            'treeLoss': tree_loss_risk,
            'population': population_risk,
            'airQuality': air_quality_risk,
            'vulnerability': vulnerability,
        }

        recommendations = tuple(
            text for key, threshold, text in self.RECOMMENDATION_RULES
            if risk_factors[key] > threshold
        )

        return RiskResult(
            overall_risk_score=overall,
            heat_risk_score=round_half_up(heat),
            vegetation_risk_score=round_half_up(vegetation_risk),
            priority=_priority_tier(overall),
            risk_factors=risk_factors,
            recommendations=recommendations,
        )

    @classmethod
    def ranking_score(cls, heat_index: float, green_deficit: float, tree_loss_rate: float,
                      population_density: float) -> RankingRiskResult:
        """
        Simplified risk score for ranking wards in listings

        Formula: R = 0.35·H + 0.30·D + 0.20·min(100, 2·T) + 0.15·min(100, P/500)

        Args:
            heat_index: Heat stress index (0-100)
            green_deficit: Green cover deficit, pre-scaled 0-100
            tree_loss_rate: Tree loss rate (%/yr)
            population_density: Residents per km²

        Returns:
            RankingRiskResult
        """
        heat = _require_finite('heat_index', heat_index)
        deficit = _require_finite('green_deficit', green_deficit)
        tree_loss_rate = _require_non_negative('tree_loss_rate', tree_loss_rate)
        population_density = _require_non_negative('population_density', population_density)

        score = round_half_up(
            heat * cls.RANKING_WEIGHT_HEAT +
            deficit * cls.RANKING_WEIGHT_DEFICIT +
            min(100.0, tree_loss_rate * 2) * cls.RANKING_WEIGHT_TREE_LOSS +
            min(100.0, population_density / cls.POPULATION_REFERENCE) * cls.RANKING_WEIGHT_POPULATION
        )
        score = int(_clamp(score, 0, 100))
        return RankingRiskResult(score=score, priority=_priority_tier(score))


REASONING_TEMPLATE = (
    "{ward_name} requires {required_trees} trees to address {coverage_gap:.1f}% green cover deficit. "
    "This intervention can reduce local temperatures by up to {heat_reduction:.1f}°C "
    "and offset {co2_offset:.0f} tons of CO₂ annually. "
    "{land_type_note}"
    "Implementation across {timeline} with estimated investment of ₹{cost_lakh:.1f}L."
)

LAND_TYPE_NOTES = {
    'industrial': 'Industrial zones prioritize pollution-resistant species. ',
}


class PlantationStrategyEngine:
    """
    Three-stage plantation planner: vision -> correlation -> strategy

    Each stage consumes the previous stage's output, so callers run them in order.
    """

    NDVI_STATUS_THRESHOLDS = (
        (0.1, 'critically_low'),
        (0.2, 'sparse'),
        (0.35, 'moderate'),
    )

    THERMAL_STATUS_THRESHOLDS = (
        (90, 'extreme_heat'),
        (75, 'high_heat'),
        (50, 'moderate_heat'),
    )

    COMFORTABLE_HEAT_INDEX = 60
    COOLING_PER_HEAT_POINT = 0.5
    URBAN_AMPLIFICATION_MAX = 1.5

    # requiredTrees lower bound (exclusive) for each timeline
    TIMELINES = (
        (1000, '24-36 months'),
        (500, '12-24 months'),
        (200, '6-12 months'),
    )
    DEFAULT_TIMELINE = '3-6 months'

    def __init__(self, policy: Optional[PolicyConfig] = None, rng=None):
        """
        Args:
            policy: Policy constants and land-type tables
            rng: Random source with a .random() method (numpy Generator or
                random.Random); seed it to make correlation jitter reproducible
        """
        self.policy = policy or DEFAULT_POLICY
        self.rng = rng if rng is not None else np.random.default_rng()

    def vision(self, ndvi: float, green_cover_percent: float, heat_index: float,
               land_surface_temp: float) -> VisionResult:
        """Assess current vegetation and thermal status"""
        ndvi = _require_finite('ndvi', ndvi)
        green = _require_finite('green_cover_percent', green_cover_percent)
        heat = _require_finite('heat_index', heat_index)
        _require_finite('land_surface_temp', land_surface_temp)

        coverage_gap = max(0.0, self.policy.target_green_cover - green)

        vegetation_status = 'adequate'
        for upper, label in self.NDVI_STATUS_THRESHOLDS:
            if ndvi < upper:
                vegetation_status = label
                break

        thermal_status = 'normal'
        for lower, label in self.THERMAL_STATUS_THRESHOLDS:
            if heat >= lower:
                thermal_status = label
                break

        priority_level = round_half_up(coverage_gap * 2 + heat * 0.3 + (0.5 - ndvi) * 50)

        return VisionResult(
            vegetation_status=vegetation_status,
            thermal_status=thermal_status,
            coverage_gap=coverage_gap,
            priority_level=int(_clamp(priority_level, 0, 100)),
        )

    def correlation(self, heat_index: float, green_cover_percent: float,
                    urban_density: float) -> CorrelationResult:
        """
        Relate heat stress to vegetation deficit

        The heat/vegetation correlation is a placeholder empirical constant
        with a small jitter, not a fitted value.
        """
        heat = _require_finite('heat_index', heat_index)
        _require_finite('green_cover_percent', green_cover_percent)
        density = _require_finite('urban_density', urban_density)
        policy = self.policy

        correlation = policy.correlation_baseline + float(self.rng.random()) * policy.correlation_jitter
        amplification = (density / 100) * self.URBAN_AMPLIFICATION_MAX
        cooling_potential = max(0.0, heat - self.COMFORTABLE_HEAT_INDEX) * self.COOLING_PER_HEAT_POINT
        trees_per_degree = round_half_up(policy.trees_per_percent / policy.cooling_per_percent)

        return CorrelationResult(
            heat_vegetation_correlation=round(correlation, 2),
            urban_heat_amplification=round(amplification, 2),
            cooling_potential=round(cooling_potential, 2),
            trees_per_degree=trees_per_degree,
        )

    def timeline_for(self, required_trees: int) -> str:
        for lower, timeline in self.TIMELINES:
            if required_trees > lower:
                return timeline
        return self.DEFAULT_TIMELINE

    def strategy(self, ward_name: str, ward_area: float, land_type: Optional[str],
                 coverage_gap: float, priority_level: float, cooling_potential: float,
                 urban_density: float) -> PlantationPlan:
        """
        Turn vision and correlation output into a plantation plan

        Args:
            ward_name: Ward display name
            ward_area: Ward area (km², > 0)
            coverage_gap: Green cover gap in percentage points (>= 0)
            priority_level: Vision priority level (0-100)
            cooling_potential: Correlation cooling potential
            urban_density: Urban density (0-100)

        Returns:
            PlantationPlan
        """
        if not isinstance(ward_name, str) or not ward_name.strip():
            raise CanopyValidationError('ward_name', "must be a non-empty string")
        area = _require_positive('ward_area', ward_area)
        gap = _require_non_negative('coverage_gap', coverage_gap)
        priority_level = _require_finite('priority_level', priority_level)
        cooling = _require_finite('cooling_potential', cooling_potential)
        density = _require_finite('urban_density', urban_density)

        policy = self.policy
        land_type = policy.resolve_land_type(land_type)
        tree_density = policy.tree_density_per_sq_km[land_type]
        cost_per_tree = policy.cost_per_tree.get(land_type, policy.cost_per_tree[policy.default_land_type])
        species = policy.species.get(land_type, policy.species[policy.default_land_type])

        required_trees = max(0, round_half_up((gap / 100) * area * tree_density))

        heat_reduction_per_tree = policy.heat_reduction_per_tree / area
        heat_reduction = min(policy.max_heat_reduction, required_trees * heat_reduction_per_tree)
        co2_offset = required_trees * policy.co2_per_tree_tonnes
        cost = required_trees * cost_per_tree
        timeline = self.timeline_for(required_trees)

        priority_score = round_half_up(
            priority_level * 0.4 + cooling * 5 + gap * 1.5 + density * 0.2
        )

        reasoning = REASONING_TEMPLATE.format(
            ward_name=ward_name,
            required_trees=required_trees,
            coverage_gap=gap,
            heat_reduction=heat_reduction,
            co2_offset=co2_offset,
            land_type_note=LAND_TYPE_NOTES.get(land_type, ''),
            timeline=timeline,
            cost_lakh=cost / 100000,
        )

        return PlantationPlan(
            required_trees=required_trees,
            estimated_heat_reduction=round(heat_reduction, 2),
            estimated_co2_offset=round(co2_offset, 2),
            estimated_cost=cost,
            implementation_timeline=timeline,
            recommended_species=tuple(species),
            priority_score=int(_clamp(priority_score, 0, 100)),
            reasoning=reasoning,
        )


# ============================================
# FUNCTION SURFACE
# ============================================

def compute_vegetation_health(red_band: float, nir_band: float, blue_band: Optional[float] = None,
                              previous_ndvi: Optional[float] = None,
                              policy: Optional[PolicyConfig] = None) -> VegetationResult:
    return VegetationIndexEngine(policy).compute(red_band, nir_band, blue_band, previous_ndvi)


def compute_heat_stress(land_surface_temp: float, ambient_temp: float, humidity: float,
                        green_cover_percent: float, urban_density: float,
                        rural_reference_temp: Optional[float] = None,
                        policy: Optional[PolicyConfig] = None) -> HeatResult:
    return HeatStressEngine(policy).compute(
        land_surface_temp, ambient_temp, humidity, green_cover_percent,
        urban_density, rural_reference_temp
    )


def detect_vegetation_change(current_ndvi: float, previous_ndvi: float, time_interval_days: float,
                             threshold: float = 0.1) -> ChangeResult:
    return ChangeDetectionEngine.detect(current_ndvi, previous_ndvi, time_interval_days, threshold)


def compute_risk_assessment(heat_index: float, green_cover_percent: float, tree_loss_rate: float,
                            population_density: float, air_quality_index: float = 150,
                            vulnerability_score: float = 50,
                            policy: Optional[PolicyConfig] = None) -> RiskResult:
    return RiskAssessmentEngine(policy).assess(
        heat_index, green_cover_percent, tree_loss_rate, population_density,
        air_quality_index, vulnerability_score
    )


assess_ward_risk = compute_risk_assessment


def ranking_risk_score(heat_index: float, green_deficit: float, tree_loss_rate: float,
                       population_density: float) -> RankingRiskResult:
    return RiskAssessmentEngine.ranking_score(heat_index, green_deficit, tree_loss_rate, population_density)


def vision_agent_analyze(ndvi: float, green_cover_percent: float, heat_index: float,
                         land_surface_temp: float,
                         policy: Optional[PolicyConfig] = None) -> VisionResult:
    return PlantationStrategyEngine(policy).vision(
        ndvi, green_cover_percent, heat_index, land_surface_temp
    )


def correlation_agent_analyze(heat_index: float, green_cover_percent: float, urban_density: float,
                              rng=None, policy: Optional[PolicyConfig] = None) -> CorrelationResult:
    return PlantationStrategyEngine(policy, rng=rng).correlation(heat_index, green_cover_percent, urban_density)


def strategy_agent_plan(ward_name: str, ward_area: float, land_type: Optional[str],
                        coverage_gap: float, priority_level: float, cooling_potential: float,
                        urban_density: float, policy: Optional[PolicyConfig] = None) -> PlantationPlan:
    return PlantationStrategyEngine(policy).strategy(
        ward_name, ward_area, land_type, coverage_gap, priority_level,
        cooling_potential, urban_density
    )
