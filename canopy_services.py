"""
Request-handling layer for the canopy monitoring backend
Storage, alerting and orchestration around the pure scoring engines
"""

import logging
import os
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

import numpy as np
from supabase import Client, create_client

import canopy_seed
from canopy_intelligence import (
    DEFAULT_POLICY,
    CanopyValidationError,
    ChangeDetectionEngine,
    HeatResult,
    HeatStressEngine,
    PlantationStrategyEngine,
    PolicyConfig,
    RiskAssessmentEngine,
    RiskResult,
    VegetationIndexEngine,
    VegetationResult,
    round_half_up,
)

logger = logging.getLogger(__name__)

# Table name -> column holding the observation date
DATED_TABLES = {
    'ndvi_scores': 'observation_date',
    'heat_indices': 'observation_date',
    'risk_assessments': 'assessment_date',
    'plantation_plans': 'plan_date',
}

ALL_TABLES = ('alerts', 'plantation_plans', 'risk_assessments', 'heat_indices', 'ndvi_scores', 'wards')

NIL_UUID = '00000000-0000-0000-0000-000000000000'


class StorageError(RuntimeError):
    """Raised when the backing store rejects a read or write"""


class WardNotFoundError(LookupError):
    """Raised when a ward id is unknown to the store"""

    def __init__(self, ward_id: str):
        self.ward_id = ward_id
        super().__init__(f"Ward not found: {ward_id}")


class AnalystUnavailableError(RuntimeError):
    """Raised when AI analysis is requested but no analyst is configured"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================
# STORAGE
# ============================================

class SupabaseService:
    """Handle Supabase database operations for ward observations, plans and alerts"""

    def __init__(self, client: Client):
        """
        Args:
            client: Configured Supabase client
        """
        self.client = client

    @classmethod
    def from_credentials(cls, supabase_url: str, supabase_key: str) -> 'SupabaseService':
        """
        Create the service from project credentials

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase service role key (for server-side operations)
        """
        return cls(create_client(supabase_url, supabase_key))

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            raise StorageError(f"Supabase {action} failed: {e}") from e

    def _latest(self, table: str, ward_id: str) -> Optional[Dict]:
        query = (self.client.table(table).select('*').eq('ward_id', ward_id)
                 .order(DATED_TABLES[table], desc=True).limit(1))
        result = self._execute(query, f"read from {table}")
        if result.data:
            return result.data[0]
        return None

    def _history(self, table: str, ward_id: str, limit: int) -> List[Dict]:
        query = (self.client.table(table).select('*').eq('ward_id', ward_id)
                 .order(DATED_TABLES[table], desc=True).limit(limit))
        return self._execute(query, f"read from {table}").data or []

    def _upsert(self, table: str, record: Dict, conflict_columns: str) -> Dict:
        query = self.client.table(table).upsert(record, on_conflict=conflict_columns)
        result = self._execute(query, f"upsert into {table}")
        return result.data[0] if result.data else record

    def list_wards(self) -> List[Dict]:
        query = self.client.table('wards').select('*').order('ward_number')
        return self._execute(query, "read wards").data or []

    def get_ward(self, ward_id: str) -> Optional[Dict]:
        query = self.client.table('wards').select('*').eq('id', ward_id).limit(1)
        result = self._execute(query, "read ward")
        if result.data:
            return result.data[0]
        return None

    def insert_wards(self, wards: List[Dict]) -> List[Dict]:
        result = self._execute(self.client.table('wards').insert(wards), "insert wards")
        return result.data or []

    def bulk_insert(self, table: str, records: List[Dict]):
        if records:
            self._execute(self.client.table(table).insert(records), f"insert into {table}")

    def get_latest_ndvi(self, ward_id: str) -> Optional[Dict]:
        return self._latest('ndvi_scores', ward_id)

    def get_latest_heat(self, ward_id: str) -> Optional[Dict]:
        return self._latest('heat_indices', ward_id)

    def get_latest_risk(self, ward_id: str) -> Optional[Dict]:
        return self._latest('risk_assessments', ward_id)

    def get_latest_plan(self, ward_id: str) -> Optional[Dict]:
        return self._latest('plantation_plans', ward_id)

    def get_ndvi_history(self, ward_id: str, limit: int = 12) -> List[Dict]:
        return self._history('ndvi_scores', ward_id, limit)

    def get_heat_history(self, ward_id: str, limit: int = 12) -> List[Dict]:
        return self._history('heat_indices', ward_id, limit)

    def save_ndvi_score(self, record: Dict) -> Dict:
        return self._upsert('ndvi_scores', record, 'ward_id,observation_date')

    def save_heat_index(self, record: Dict) -> Dict:
        return self._upsert('heat_indices', record, 'ward_id,observation_date')

    def save_risk_assessment(self, record: Dict) -> Dict:
        return self._upsert('risk_assessments', record, 'ward_id,assessment_date')

    def save_plantation_plan(self, record: Dict) -> Dict:
        return self._upsert('plantation_plans', record, 'ward_id,plan_date')

    def insert_alert(self, alert: Dict) -> Dict:
        result = self._execute(self.client.table('alerts').insert(alert), "insert alert")
        return result.data[0] if result.data else alert

    def list_alerts(self, limit: int = 20, severity: Optional[str] = None) -> List[Dict]:
        query = self.client.table('alerts').select('*, wards(name)').order('detected_at', desc=True).limit(limit)
        if severity:
            query = query.eq('severity', severity)
        return self._execute(query, "read alerts").data or []

    def count_alerts_since(self, alert_type: str, since: str) -> int:
        query = (self.client.table('alerts').select('id', count='exact')
                 .eq('alert_type', alert_type).gte('detected_at', since))
        return self._execute(query, "count alerts").count or 0

    def list_observations(self, table: str) -> List[Dict]:
        """Every row of a dated table, oldest first"""
        query = self.client.table(table).select('*').order(DATED_TABLES[table])
        return self._execute(query, f"read from {table}").data or []

    def list_risk_assessments(self, priority: Optional[str] = None, limit: int = 5) -> List[Dict]:
        query = (self.client.table('risk_assessments').select('*, wards(name)')
                 .order('overall_risk_score', desc=True).limit(limit))
        if priority:
            query = query.eq('priority', priority)
        return self._execute(query, "read risk assessments").data or []

    def list_plans(self, limit: int = 20, min_priority_score: Optional[int] = None) -> List[Dict]:
        query = (self.client.table('plantation_plans').select('*, wards(name, zone)')
                 .order('priority_score', desc=True).limit(limit))
        if min_priority_score is not None:
            query = query.gte('priority_score', min_priority_score)
        return self._execute(query, "read plans").data or []

    def count(self, table: str) -> int:
        query = self.client.table(table).select('id', count='exact').limit(1)
        return self._execute(query, f"count {table}").count or 0

    def reset(self):
        """Delete every row from all canopy tables, children first"""
        for table in ALL_TABLES:
            self._execute(self.client.table(table).delete().neq('id', NIL_UUID), f"clear {table}")


class InMemoryWardStore:
    """
    Process-local store with the same interface as SupabaseService

    Used when Supabase credentials are not configured and in tests.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict]] = {name: [] for name in ALL_TABLES}

    def _ward_names(self, ward_id: str, columns) -> Dict:
        ward = self.get_ward(ward_id) or {}
        return {column: ward.get(column) for column in columns}

    def _latest(self, table: str, ward_id: str) -> Optional[Dict]:
        history = self._history(table, ward_id, 1)
        return history[0] if history else None

    def _history(self, table: str, ward_id: str, limit: int) -> List[Dict]:
        date_column = DATED_TABLES[table]
        rows = [row for row in self.tables[table] if row.get('ward_id') == ward_id]
        # Stable sort keeps the most recent insert first among equal dates
        rows = sorted(reversed(rows), key=lambda row: row.get(date_column) or '', reverse=True)
        return [dict(row) for row in rows[:limit]]

    def _upsert(self, table: str, record: Dict, date_column: str) -> Dict:
        rows = self.tables[table]
        for index, row in enumerate(rows):
            if row['ward_id'] == record['ward_id'] and row[date_column] == record[date_column]:
                rows[index] = {**row, **record}
                return dict(rows[index])
        stored = {'id': str(uuid.uuid4()), **record}
        rows.append(stored)
        return dict(stored)

    def list_wards(self) -> List[Dict]:
        return [dict(ward) for ward in sorted(self.tables['wards'], key=lambda w: w.get('ward_number') or 0)]

    def get_ward(self, ward_id: str) -> Optional[Dict]:
        for ward in self.tables['wards']:
            if ward['id'] == ward_id:
                return dict(ward)
        return None

    def insert_wards(self, wards: List[Dict]) -> List[Dict]:
        inserted = [{'id': str(uuid.uuid4()), **ward} for ward in wards]
        self.tables['wards'].extend(inserted)
        return [dict(ward) for ward in inserted]

    def bulk_insert(self, table: str, records: List[Dict]):
        self.tables[table].extend({'id': str(uuid.uuid4()), **record} for record in records)

    def get_latest_ndvi(self, ward_id: str) -> Optional[Dict]:
        return self._latest('ndvi_scores', ward_id)

    def get_latest_heat(self, ward_id: str) -> Optional[Dict]:
        return self._latest('heat_indices', ward_id)

    def get_latest_risk(self, ward_id: str) -> Optional[Dict]:
        return self._latest('risk_assessments', ward_id)

    def get_latest_plan(self, ward_id: str) -> Optional[Dict]:
        return self._latest('plantation_plans', ward_id)

    def get_ndvi_history(self, ward_id: str, limit: int = 12) -> List[Dict]:
        return self._history('ndvi_scores', ward_id, limit)

    def get_heat_history(self, ward_id: str, limit: int = 12) -> List[Dict]:
        return self._history('heat_indices', ward_id, limit)

    def save_ndvi_score(self, record: Dict) -> Dict:
        return self._upsert('ndvi_scores', record, 'observation_date')

    def save_heat_index(self, record: Dict) -> Dict:
        return self._upsert('heat_indices', record, 'observation_date')

    def save_risk_assessment(self, record: Dict) -> Dict:
        return self._upsert('risk_assessments', record, 'assessment_date')

    def save_plantation_plan(self, record: Dict) -> Dict:
        return self._upsert('plantation_plans', record, 'plan_date')

    def insert_alert(self, alert: Dict) -> Dict:
        stored = {'id': str(uuid.uuid4()), 'detected_at': _now_iso(), 'is_active': True, **alert}
        self.tables['alerts'].append(stored)
        return dict(stored)

    def list_alerts(self, limit: int = 20, severity: Optional[str] = None) -> List[Dict]:
        alerts = [a for a in self.tables['alerts'] if not severity or a.get('severity') == severity]
        alerts = sorted(alerts, key=lambda a: a.get('detected_at') or '', reverse=True)[:limit]
        return [{**a, 'wards': self._ward_names(a.get('ward_id'), ('name',))} for a in alerts]

    def count_alerts_since(self, alert_type: str, since: str) -> int:
        return sum(1 for a in self.tables['alerts']
                   if a.get('alert_type') == alert_type and (a.get('detected_at') or '') >= since)

    def list_observations(self, table: str) -> List[Dict]:
        date_column = DATED_TABLES[table]
        return [dict(row) for row in sorted(self.tables[table], key=lambda row: row.get(date_column) or '')]

    def list_risk_assessments(self, priority: Optional[str] = None, limit: int = 5) -> List[Dict]:
        risks = [r for r in self.tables['risk_assessments'] if not priority or r.get('priority') == priority]
        risks = sorted(risks, key=lambda r: r.get('overall_risk_score') or 0, reverse=True)[:limit]
        return [{**r, 'wards': self._ward_names(r.get('ward_id'), ('name',))} for r in risks]

    def list_plans(self, limit: int = 20, min_priority_score: Optional[int] = None) -> List[Dict]:
        plans = [p for p in self.tables['plantation_plans']
                 if min_priority_score is None or p.get('priority_score', 0) >= min_priority_score]
        plans = sorted(plans, key=lambda p: p.get('priority_score', 0), reverse=True)[:limit]
        return [{**p, 'wards': self._ward_names(p.get('ward_id'), ('name', 'zone'))} for p in plans]

    def count(self, table: str) -> int:
        return len(self.tables[table])

    def reset(self):
        for rows in self.tables.values():
            rows.clear()


# ============================================
# ALERTING
# ============================================

class AlertBuilder:
    """Turn engine results into alert records when thresholds are crossed"""

    def __init__(self, policy: Optional[PolicyConfig] = None):
        self.policy = policy or DEFAULT_POLICY

    def vegetation_change_alert(self, ward_id: str, vegetation: VegetationResult,
                                previous_ndvi: Optional[float]) -> Optional[Dict]:
        """Alert on a significant NDVI drop since the previous observation"""
        change = vegetation.change_from_previous
        if change is None or change >= self.policy.vegetation_loss_trigger:
            return None

        result = ChangeDetectionEngine.detect(
            current_ndvi=vegetation.ndvi,
            previous_ndvi=previous_ndvi or 0.0,
            time_interval_days=self.policy.change_window_days,
        )
        if result.alert_level == 'low':
            return None

        return {
            'ward_id': ward_id,
            'alert_type': 'vegetation_change',
            'severity': result.alert_level,
            'title': 'Vegetation Loss Detected',
            'message': f"NDVI dropped by {result.change_magnitude * 100:.1f}% - possible deforestation",
            'detection_method': 'ML-NDVI-Analysis',
            'confidence_score': result.confidence,
            'metadata': {'change': result.to_dict()},
        }

    def heat_spike_alert(self, ward_id: str, heat: HeatResult) -> Optional[Dict]:
        if heat.heat_index < self.policy.heat_spike_threshold:
            return None
        severity = 'critical' if heat.heat_index >= self.policy.heat_spike_critical_threshold else 'high'
        return {
            'ward_id': ward_id,
            'alert_type': 'heat_spike',
            'severity': severity,
            'title': 'Heat Spike Alert',
            'message': f"Heat stress index reached {heat.heat_index} - {heat.risk_category} risk level",
            'detection_method': 'ML-UHI-Analysis',
            'confidence_score': 95,
            'metadata': {'heatAnalysis': heat.to_dict()},
        }

    def risk_alert(self, ward_id: str, risk: RiskResult) -> Optional[Dict]:
        if risk.priority != 'critical':
            return None
        headline = risk.recommendations[0] if risk.recommendations else 'Immediate intervention required.'
        return {
            'ward_id': ward_id,
            'alert_type': 'risk_alert',
            'severity': 'critical',
            'title': 'Critical Risk Zone',
            'message': f"Overall risk score: {risk.overall_risk_score}/100. {headline}",
            'detection_method': 'ML-Risk-Assessment',
            'confidence_score': 90,
            'metadata': {'riskAssessment': risk.to_dict()},
        }


# ============================================
# AI ANALYST
# ============================================

class PlanningAnalystService:
    """Narrative ward analysis using Google Gemini"""

    SYSTEM_PROMPT = ("You are an expert urban environmental planner specializing in "
                     "climate resilience and green infrastructure.")

    def __init__(self, api_key: Optional[str] = None, model_name: str = 'gemini-1.5-flash'):
        """
        Initialize Gemini API service

        Args:
            api_key: Google Gemini API key (optional, can be set via env var)
            model_name: Gemini model to use
        """
        self.api_key = api_key or os.getenv('GEMINI_API_KEY')
        if not self.api_key:
            raise ValueError("Gemini API key is required. Set GEMINI_API_KEY environment variable.")

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError("google-generativeai package is required. Install with: pip install google-generativeai")

        genai.configure(api_key=self.api_key)
        self.genai = genai
        self.model_name = model_name
        self.model = genai.GenerativeModel(model_name, system_instruction=self.SYSTEM_PROMPT)

    @staticmethod
    def _response_text(response) -> str:
        if hasattr(response, 'text'):
            return response.text
        elif hasattr(response, 'candidates') and len(response.candidates) > 0:
            return response.candidates[0].content.parts[0].text
        return "Analysis not available"

    def analyze(self, prompt: str) -> str:
        """Send the prompt to Gemini and return the response text"""
        try:
            response = self.model.generate_content(prompt)
        except Exception as e:
            raise RuntimeError(f"AI analysis failed: {e}") from e
        return self._response_text(response)

    def chat(self, messages: List[Dict], system_prompt: str) -> str:
        """
        Continue a conversation with Gemini

        Args:
            messages: Turns as {'role': 'user' or 'assistant', 'content': text}
            system_prompt: Instruction for this conversation

        Returns:
            Reply text
        """
        model = self.genai.GenerativeModel(self.model_name, system_instruction=system_prompt)
        contents = [
            {'role': 'model' if message['role'] == 'assistant' else 'user', 'parts': [message['content']]}
            for message in messages
        ]
        try:
            response = model.generate_content(contents)
        except Exception as e:
            raise RuntimeError(f"AI chat failed: {e}") from e
        return self._response_text(response)


def build_analysis_prompt(ward: Optional[Dict], ndvi: Optional[Dict], heat: Optional[Dict],
                          plan: Optional[Dict], analysis_type: Optional[str]) -> str:
    def value(record, key, fallback='N/A'):
        if record and record.get(key) is not None:
            return record[key]
        return fallback

    ward_name = value(ward, 'name', 'this ward')
    return f"""As an AI urban planning expert, analyze the following environmental data for {ward_name} and provide {analysis_type or 'comprehensive'} recommendations:

Environmental Data:
- NDVI Score: {value(ndvi, 'ndvi_value')}
- Green Cover: {value(ndvi, 'green_cover_percent')}%
- Heat Index: {value(heat, 'heat_index')}/100
- Land Surface Temperature: {value(heat, 'land_surface_temp')}°C

Current Plan (if any):
- Required Trees: {value(plan, 'required_trees', 'Not calculated')}
- Expected Heat Reduction: {value(plan, 'estimated_heat_reduction')}°C

Provide a concise analysis with:
1. Current situation assessment
2. Key risks and vulnerabilities
3. Specific intervention recommendations
4. Expected outcomes with timeline

Keep response under 300 words and focus on actionable insights."""


# Extra instruction appended to the assistant prompt per chat type
CHAT_INSTRUCTIONS = {
    'chat': '',
    'analysis': """

You are now performing a detailed analysis. Provide comprehensive insights with:
- Specific data points and percentages
- Risk assessments with confidence levels
- Prioritized recommendations
- Timeline estimates for interventions""",
    'summary': """

Provide a brief executive summary (2-3 sentences) focusing on the most critical insights and immediate action items.""",
}


def build_chat_prompt(kpis: List[Dict], critical_wards: List[Dict], chat_type: str = 'chat') -> str:
    """
    Assistant instruction grounded in the current KPIs and highest-ranked wards

    Args:
        kpis: Output of CanopyIntelligenceSystem.get_kpis
        critical_wards: Ranked wards, highest risk first
        chat_type: One of CHAT_INSTRUCTIONS
    """
    context = '\n'.join(f"- {kpi['label']}: {kpi['value']} {kpi['unit']}" for kpi in kpis)
    zones = '\n'.join(
        f"{index}. {ward['name']} - Green Cover: {ward['green_cover_percent']}%, Heat Index: {ward['heat_index']}"
        for index, ward in enumerate(critical_wards, start=1)
    ) or "No ward observations stored yet."

    prompt = f"""You are Canopy AI, the assistant for DelhiCanopy, an urban green intelligence command center for Delhi.

Your expertise includes:
- Urban green cover analysis and monitoring
- Heat stress zone identification and mitigation strategies
- Tree loss detection and prevention
- Climate-resilient plantation planning
- Ward-level environmental data analysis
- CO2 absorption calculations and carbon offset recommendations

Current Delhi Environmental Context:
{context}

Critical Zones (Priority Intervention):
{zones}

Keep responses concise, data-focused, and actionable. Use specific ward data when relevant. Format important metrics clearly."""
    return prompt + CHAT_INSTRUCTIONS[chat_type]


# ============================================
# ORCHESTRATION
# ============================================

class CanopyIntelligenceSystem:
    """Main system orchestrating engines, storage and alerting per ward"""

    URBAN_LAND_TYPES = ('residential', 'commercial', 'industrial', 'mixed_urban')

    # Fallbacks when a ward has no stored observations yet
    DEFAULT_GREEN_COVER = 20.0
    DEFAULT_HEAT_INDEX = 70
    DEFAULT_TREE_LOSS_RATE = 5.0
    DEFAULT_POPULATION_DENSITY = 15000.0
    DEFAULT_AIR_QUALITY_INDEX = 150.0
    DEFAULT_VULNERABILITY = 50.0

    PLAN_DEFAULT_NDVI = 0.15
    PLAN_DEFAULT_GREEN_COVER = 15.0
    PLAN_DEFAULT_HEAT_INDEX = 75
    PLAN_DEFAULT_LST = 38.0
    PLAN_DEFAULT_URBAN_DENSITY = 70.0
    PLAN_DEFAULT_WARD_AREA = 10.0

    # Trees per (% green cover x km²) used for CO2 estimates
    TREES_PER_GREEN_PERCENT_KM2 = 50

    # Map layer -> feature properties carried besides the ward identity
    GEOJSON_LAYERS = {
        'all': ('greenCover', 'heatIndex', 'riskScore', 'priority'),
        'green': ('greenCover',),
        'heat': ('heatIndex',),
        'risk': ('riskScore', 'priority'),
    }

    def __init__(self, store, policy: Optional[PolicyConfig] = None, rng=None,
                 analyst: Optional[PlanningAnalystService] = None):
        """
        Args:
            store: SupabaseService or InMemoryWardStore
            policy: Policy constants shared by all engines
            rng: Random source for jitter and simulations (numpy Generator)
            analyst: Optional Gemini analyst for narrative analysis
        """
        self.store = store
        self.policy = policy or DEFAULT_POLICY
        self.rng = rng if rng is not None else np.random.default_rng()
        self.analyst = analyst
        self.vegetation_engine = VegetationIndexEngine(self.policy)
        self.heat_engine = HeatStressEngine(self.policy)
        self.risk_engine = RiskAssessmentEngine(self.policy)
        self.plantation_engine = PlantationStrategyEngine(self.policy, self.rng)
        self.alert_builder = AlertBuilder(self.policy)

    @staticmethod
    def _today() -> str:
        return date.today().isoformat()

    def _uniform(self, low: float, span: float) -> float:
        return low + float(self.rng.random()) * span

    def _require_ward(self, ward_id: str) -> Dict:
        ward = self.store.get_ward(ward_id)
        if not ward:
            raise WardNotFoundError(ward_id)
        return ward

    def _emit(self, alert: Optional[Dict]) -> Optional[Dict]:
        if alert is None:
            return None
        logger.info(f"Alert {alert['alert_type']} ({alert['severity']}) for ward {alert['ward_id']}")
        return self.store.insert_alert(alert)

    # ---------- per-ward analysis ----------

    def analyze_ndvi(self, ward_id: str, red_band: float, nir_band: float,
                     blue_band: Optional[float] = None, observation_date: Optional[str] = None) -> Dict:
        """
        Compute and store vegetation health for a ward

        Raises a vegetation_change alert when NDVI drops sharply since the
        last stored observation.
        """
        self._require_ward(ward_id)
        previous = self.store.get_latest_ndvi(ward_id)
        previous_ndvi = previous.get('ndvi_value') if previous else None

        result = self.vegetation_engine.compute(red_band, nir_band, blue_band, previous_ndvi)

        self.store.save_ndvi_score({
            'ward_id': ward_id,
            'observation_date': observation_date or self._today(),
            'ndvi_value': result.ndvi,
            'evi_value': result.evi,
            'green_cover_percent': result.green_cover_percent,
            'vegetation_density': result.vegetation_density,
            'satellite_source': 'Sentinel-2',
            'confidence_score': 92,
        })

        alert = self._emit(self.alert_builder.vegetation_change_alert(ward_id, result, previous_ndvi))

        logger.info(f"NDVI computed for ward {ward_id}: {result.ndvi}")
        return {'result': result.to_dict(), 'alert': alert}

    def analyze_heat_stress(self, ward_id: str, land_surface_temp: float, ambient_temp: float,
                            humidity: float, urban_density: float,
                            observation_date: Optional[str] = None) -> Dict:
        """Compute and store heat stress for a ward, raising heat_spike alerts"""
        self._require_ward(ward_id)
        ndvi = self.store.get_latest_ndvi(ward_id)
        green_cover = ndvi.get('green_cover_percent') if ndvi else None
        if green_cover is None:
            green_cover = self.DEFAULT_GREEN_COVER

        result = self.heat_engine.compute(land_surface_temp, ambient_temp, humidity, green_cover, urban_density)

        self.store.save_heat_index({
            'ward_id': ward_id,
            'observation_date': observation_date or self._today(),
            'land_surface_temp': land_surface_temp,
            'ambient_temp': ambient_temp,
            'humidity': humidity,
            'heat_index': result.heat_index,
            'uhi_intensity': result.uhi_intensity,
            'thermal_comfort_index': result.thermal_comfort_index,
            'data_source': 'MODIS-LST',
        })

        alert = self._emit(self.alert_builder.heat_spike_alert(ward_id, result))

        logger.info(f"Heat stress computed for ward {ward_id}: {result.heat_index}")
        return {'result': result.to_dict(), 'alert': alert}

    def assess_risk(self, ward_id: str, population_density: Optional[float] = None,
                    tree_loss_rate: Optional[float] = None, air_quality_index: Optional[float] = None,
                    vulnerability_score: Optional[float] = None,
                    assessment_date: Optional[str] = None) -> Dict:
        """Compute and store the weighted risk assessment for a ward"""
        self._require_ward(ward_id)
        ndvi = self.store.get_latest_ndvi(ward_id) or {}
        heat = self.store.get_latest_heat(ward_id) or {}

        def pick(value, fallback):
            return fallback if value is None else value

        result = self.risk_engine.assess(
            heat_index=pick(heat.get('heat_index'), self.DEFAULT_HEAT_INDEX),
            green_cover_percent=pick(ndvi.get('green_cover_percent'), self.DEFAULT_GREEN_COVER),
            tree_loss_rate=pick(tree_loss_rate, self.DEFAULT_TREE_LOSS_RATE),
            population_density=pick(population_density, self.DEFAULT_POPULATION_DENSITY),
            air_quality_index=pick(air_quality_index, self.DEFAULT_AIR_QUALITY_INDEX),
            vulnerability_score=pick(vulnerability_score, self.DEFAULT_VULNERABILITY),
        )

        self.store.save_risk_assessment({
            'ward_id': ward_id,
            'assessment_date': assessment_date or self._today(),
            'overall_risk_score': result.overall_risk_score,
            'heat_risk_score': result.heat_risk_score,
            'vegetation_risk_score': result.vegetation_risk_score,
            'priority': result.priority,
            'risk_factors': dict(result.risk_factors),
            'ai_analysis': '; '.join(result.recommendations),
            'confidence_score': 90,
        })

        alert = self._emit(self.alert_builder.risk_alert(ward_id, result))

        logger.info(f"Risk assessment computed for ward {ward_id}: {result.overall_risk_score}")
        return {'result': result.to_dict(), 'alert': alert}

    def batch_analysis(self) -> List[Dict]:
        """
        Run vegetation, heat and risk engines for every ward on simulated inputs

        Results are returned, not persisted.
        """
        results = []
        for ward in self.store.list_wards():
            base_temp = self._uniform(28, 15)
            humidity = self._uniform(40, 40)
            urban_density = self._uniform(50, 50)
            red_band = self._uniform(0.1, 0.3)
            nir_band = self._uniform(0.2, 0.5)

            vegetation = self.vegetation_engine.compute(red_band, nir_band)
            heat = self.heat_engine.compute(
                land_surface_temp=base_temp + 5,
                ambient_temp=base_temp,
                humidity=humidity,
                green_cover_percent=vegetation.green_cover_percent,
                urban_density=urban_density,
            )
            risk = self.risk_engine.assess(
                heat_index=heat.heat_index,
                green_cover_percent=vegetation.green_cover_percent,
                tree_loss_rate=self._uniform(0, 20),
                population_density=self._uniform(10000, 30000),
            )

            results.append({
                'wardId': ward['id'],
                'wardName': ward['name'],
                'ndvi': vegetation.to_dict(),
                'heat': heat.to_dict(),
                'risk': risk.to_dict(),
            })

        logger.info(f"Batch analysis completed for {len(results)} wards")
        return results

    # ---------- plantation planning ----------

    def _plan_for_ward(self, ward: Dict, land_type: Optional[str], urban_density: float,
                       ward_area: Optional[float] = None) -> Dict:
        ndvi = self.store.get_latest_ndvi(ward['id']) or {}
        heat = self.store.get_latest_heat(ward['id']) or {}

        def pick(record, key, fallback):
            value = record.get(key)
            return fallback if value is None else value

        green_cover = pick(ndvi, 'green_cover_percent', self.PLAN_DEFAULT_GREEN_COVER)
        heat_index = pick(heat, 'heat_index', self.PLAN_DEFAULT_HEAT_INDEX)

        logger.info(f"Running vision stage for {ward['name']}")
        vision = self.plantation_engine.vision(
            ndvi=pick(ndvi, 'ndvi_value', self.PLAN_DEFAULT_NDVI),
            green_cover_percent=green_cover,
            heat_index=heat_index,
            land_surface_temp=pick(heat, 'land_surface_temp', self.PLAN_DEFAULT_LST),
        )

        logger.info(f"Running correlation stage for {ward['name']}")
        correlation = self.plantation_engine.correlation(heat_index, green_cover, urban_density)

        resolved_land_type = self.policy.resolve_land_type(land_type)
        if ward_area is None:
            ward_area = ward.get('area_sq_km') or self.PLAN_DEFAULT_WARD_AREA

        logger.info(f"Running strategy stage for {ward['name']}")
        plan = self.plantation_engine.strategy(
            ward_name=ward['name'],
            ward_area=ward_area,
            land_type=resolved_land_type,
            coverage_gap=vision.coverage_gap,
            priority_level=vision.priority_level,
            cooling_potential=correlation.cooling_potential,
            urban_density=urban_density,
        )

        self.store.save_plantation_plan({
            'ward_id': ward['id'],
            'plan_date': self._today(),
            'priority_score': plan.priority_score,
            'required_trees': plan.required_trees,
            'recommended_species': list(plan.recommended_species),
            'land_type': resolved_land_type,
            'estimated_heat_reduction': plan.estimated_heat_reduction,
            'estimated_co2_offset': plan.estimated_co2_offset,
            'estimated_cost_inr': plan.estimated_cost,
            'implementation_timeline': plan.implementation_timeline,
            'ai_reasoning': plan.reasoning,
            'ai_confidence': 92,
            'status': 'proposed',
        })

        return {
            'ward': {'id': ward['id'], 'name': ward['name']},
            'analysis': {
                'vision': vision.to_dict(),
                'correlation': correlation.to_dict(),
            },
            'plan': plan.to_dict(),
        }

    def generate_plan(self, ward_id: str, land_type: Optional[str] = None,
                      urban_density: Optional[float] = None) -> Dict:
        """Run vision -> correlation -> strategy for one ward and store the plan"""
        ward = self._require_ward(ward_id)
        if urban_density is None:
            urban_density = self.PLAN_DEFAULT_URBAN_DENSITY

        response = self._plan_for_ward(ward, land_type, urban_density)
        logger.info(f"Plan generated for {ward['name']}: {response['plan']['requiredTrees']} trees")
        return response

    def generate_all_plans(self) -> List[Dict]:
        """Generate plans for every ward with simulated land types and density"""
        results = []
        for ward in self.store.list_wards():
            land_type = self.URBAN_LAND_TYPES[int(self.rng.random() * len(self.URBAN_LAND_TYPES))]
            urban_density = self._uniform(50, 50)
            try:
                response = self._plan_for_ward(ward, land_type, urban_density)
            except (ValueError, RuntimeError):
                logger.exception(f"Error processing ward {ward['id']}")
                continue
            results.append({'wardId': ward['id'], 'wardName': ward['name'], 'plan': response['plan']})

        logger.info(f"Generated plans for {len(results)} wards")
        return results

    def list_plans(self, limit: int = 20, priority: Optional[str] = None) -> List[Dict]:
        """Stored plans formatted for display, highest priority first"""
        min_score = None
        if priority:
            min_score = {'high': 70, 'medium': 40}.get(priority, 0)

        formatted = []
        for plan in self.store.list_plans(limit=limit, min_priority_score=min_score):
            score = plan.get('priority_score') or 0
            if score >= 80:
                label = 'CRITICAL'
            elif score >= 60:
                label = 'HIGH'
            else:
                label = 'MEDIUM'
            land_type = plan.get('land_type')
            ward_name = (plan.get('wards') or {}).get('name') or 'Unknown'
            formatted.append({
                'ward': f"Ward {ward_name}",
                'priority': label,
                'requiredTrees': plan.get('required_trees'),
                'heatReduction': plan.get('estimated_heat_reduction'),
                'carbonOffset': plan.get('estimated_co2_offset'),
                'urgencyIndex': score,
                'landType': land_type.replace('_', ' ').title() if land_type else 'Mixed Urban',
                'estimatedCost': f"₹{(plan.get('estimated_cost_inr') or 0) / 100000:.1f}L",
                'timeline': plan.get('implementation_timeline'),
                'species': plan.get('recommended_species'),
                'reasoning': plan.get('ai_reasoning'),
            })
        return formatted

    # ---------- ward listings ----------

    def list_wards(self) -> List[Dict]:
        """All wards with their latest NDVI, heat and risk metrics"""
        wards = []
        for ward in self.store.list_wards():
            ndvi = self.store.get_latest_ndvi(ward['id']) or {}
            heat = self.store.get_latest_heat(ward['id']) or {}
            risk = self.store.get_latest_risk(ward['id']) or {}
            wards.append({
                **ward,
                'latest_ndvi': ndvi.get('ndvi_value'),
                'green_cover_percent': ndvi.get('green_cover_percent') or 0,
                'heat_index': heat.get('heat_index') or 0,
                'land_surface_temp': heat.get('land_surface_temp') or 0,
                'risk_score': risk.get('overall_risk_score') or 0,
                'priority': risk.get('priority') or 'low',
            })
        logger.info(f"Returned {len(wards)} wards with metrics")
        return wards

    def rank_wards(self) -> List[Dict]:
        """
        Wards ordered by the simplified ranking risk score

        Uses the ranking formula, not the full assessment.
        """
        ranked = []
        for ward in self.list_wards():
            risk = self.store.get_latest_risk(ward['id']) or {}
            tree_loss_score = (risk.get('risk_factors') or {}).get('treeLoss') or 0
            area = ward.get('area_sq_km') or 0
            population_density = (ward.get('population') or 0) / area if area > 0 else 0
            green_deficit = max(0.0, min(100.0, (self.policy.target_green_cover - ward['green_cover_percent'])
                                         * RiskAssessmentEngine.VEGETATION_DEFICIT_SCALE))

            ranking = self.risk_engine.ranking_score(
                heat_index=ward['heat_index'],
                green_deficit=green_deficit,
                tree_loss_rate=tree_loss_score / RiskAssessmentEngine.TREE_LOSS_SCALE,
                population_density=population_density,
            )
            ranked.append({**ward, 'ranking_score': ranking.score, 'ranking_priority': ranking.priority})

        ranked.sort(key=lambda w: w['ranking_score'], reverse=True)
        return ranked

    def get_ward_detail(self, ward_id: str) -> Dict:
        ward = self._require_ward(ward_id)
        return {
            'ward': ward,
            'ndvi_history': self.store.get_ndvi_history(ward_id, 12),
            'heat_history': self.store.get_heat_history(ward_id, 12),
        }

    def list_alerts(self, limit: int = 20, severity: Optional[str] = None) -> List[Dict]:
        alerts = self.store.list_alerts(limit=limit, severity=severity)
        logger.info(f"Returned {len(alerts)} alerts")
        return alerts

    def get_kpis(self) -> List[Dict]:
        """Dashboard KPIs aggregated over each ward's latest observations"""
        wards = self.list_wards()
        with_ndvi = [w for w in wards if w['latest_ndvi'] is not None]
        with_heat = [w for w in wards if w['heat_index']]

        avg_green_cover = (sum(w['green_cover_percent'] for w in with_ndvi) / len(with_ndvi)) if with_ndvi else 0.0
        avg_heat_index = int(round(sum(w['heat_index'] for w in with_heat) / len(with_heat))) if with_heat else 0
        high_risk_wards = sum(1 for w in wards if w['priority'] in ('high', 'critical'))
        total_co2 = sum(
            round(w['green_cover_percent'] * (w.get('area_sq_km') or 0) * self.TREES_PER_GREEN_PERCENT_KM2)
            * self.policy.co2_per_tree_tonnes
            for w in with_ndvi
        )
        since = (datetime.now(timezone.utc) - timedelta(hours=24)).isoformat()
        tree_loss_count = self.store.count_alerts_since('tree_loss', since)

        def status(value, critical, warning, higher_is_worse=True):
            if higher_is_worse:
                return 'critical' if value > critical else 'warning' if value > warning else 'normal'
            return 'critical' if value < critical else 'warning' if value < warning else 'normal'

        return [
            {
                'label': 'Total Green Cover',
                'value': round(avg_green_cover, 1),
                'unit': '%',
                'trend': 'up' if avg_green_cover > 22 else 'down',
                'status': status(avg_green_cover, 20, 25, higher_is_worse=False),
            },
            {
                'label': 'Heat Stress Index',
                'value': avg_heat_index,
                'unit': '/100',
                'trend': 'up' if avg_heat_index > 75 else 'stable',
                'status': status(avg_heat_index, 80, 70),
            },
            {
                'label': 'High Risk Wards',
                'value': high_risk_wards,
                'unit': 'zones',
                'trend': 'up',
                'status': status(high_risk_wards, 40, 20),
            },
            {
                'label': 'CO₂ Absorption',
                'value': int(round(total_co2)),
                'unit': 'tons/yr',
                'trend': 'up' if total_co2 > 3000 else 'down',
                'status': status(total_co2, 2500, 3000, higher_is_worse=False),
            },
            {
                'label': 'Tree Loss Alerts',
                'value': tree_loss_count,
                'unit': 'last 24h',
                'trend': 'up' if tree_loss_count > 20 else 'down',
                'status': status(tree_loss_count, 25, 15),
            },
        ]

    def get_stats(self) -> Dict:
        return {
            'ndviRecords': self.store.count('ndvi_scores'),
            'heatRecords': self.store.count('heat_indices'),
            'riskAssessments': self.store.count('risk_assessments'),
            'totalAlerts': self.store.count('alerts'),
            'lastUpdated': _now_iso(),
        }

    # ---------- dashboard analytics ----------

    def climate_trends(self, months: int = 12) -> List[Dict]:
        """
        Monthly city-wide averages of LST, heat index and green cover

        Returns the latest `months` calendar months that have observations,
        oldest first.
        """
        if months < 1:
            raise CanopyValidationError('months', f"must be at least 1, got {months}")

        buckets: Dict[str, Dict[str, List[float]]] = {}

        def collect(rows, source, target):
            for row in rows:
                value = row.get(source)
                period = str(row.get('observation_date') or '')[:7]
                if value is None or not period:
                    continue
                buckets.setdefault(period, {'lst': [], 'heat': [], 'green': []})[target].append(value)

        heat_rows = self.store.list_observations('heat_indices')
        collect(heat_rows, 'land_surface_temp', 'lst')
        collect(heat_rows, 'heat_index', 'heat')
        collect(self.store.list_observations('ndvi_scores'), 'green_cover_percent', 'green')

        def mean(values):
            return sum(values) / len(values) if values else 0.0

        trends = []
        for period in sorted(buckets)[-months:]:
            values = buckets[period]
            trends.append({
                'month': datetime.strptime(period, '%Y-%m').strftime('%b'),
                'period': period,
                'avgTemp': round_half_up(mean(values['lst'])),
                'heatIndex': round_half_up(mean(values['heat'])),
                'greenCover': round(mean(values['green']), 1),
            })
        return trends

    def geojson(self, layer: str = 'all') -> Dict:
        """Ward boundaries as a GeoJSON FeatureCollection carrying the requested metric layer"""
        metrics = self.GEOJSON_LAYERS.get(layer)
        if metrics is None:
            raise CanopyValidationError('layer', f"unknown layer {layer!r}, expected one of {sorted(self.GEOJSON_LAYERS)}")

        features = []
        for ward in self.list_wards():
            if not ward.get('boundary'):
                continue
            values = {
                'greenCover': ward['green_cover_percent'],
                'heatIndex': ward['heat_index'],
                'riskScore': ward['risk_score'],
                'priority': ward['priority'],
            }
            features.append({
                'type': 'Feature',
                'properties': {
                    'id': ward['id'],
                    'name': ward['name'],
                    'wardNumber': ward.get('ward_number'),
                    'zone': ward.get('zone'),
                    **{name: values[name] for name in metrics},
                },
                'geometry': ward['boundary'],
            })

        return {'type': 'FeatureCollection', 'features': features}

    def get_insights(self) -> List[Dict]:
        """Four headline insights from critical risks, climate trends, stored plans and recent alerts"""
        critical = self.store.list_risk_assessments(priority='critical', limit=5)
        trends = self.climate_trends()
        plans = self.store.list_plans(limit=1)
        recent_alerts = self.store.list_alerts(limit=10)

        if critical:
            top = critical[0]
            ward_name = (top.get('wards') or {}).get('name') or 'Unknown ward'
            heat_text = (f"{ward_name} shows {top.get('overall_risk_score')}% risk score "
                         f"with urgent intervention needed within 30 days.")
        else:
            heat_text = "No ward is currently assessed at critical risk."

        rising = False
        if len(trends) >= 2:
            first, last = trends[0], trends[-1]
            rising = last['heatIndex'] > first['heatIndex']
            if rising:
                direction = 'rose'
            elif last['heatIndex'] < first['heatIndex']:
                direction = 'fell'
            else:
                direction = 'held steady'
            trend_text = (f"Average heat index {direction} from {first['heatIndex']} in {first['month']} "
                          f"to {last['heatIndex']} in {last['month']}, with green cover at {last['greenCover']}%.")
        else:
            trend_text = "Not enough monthly history to establish a heat trend."

        if plans:
            plan = plans[0]
            ward_name = (plan.get('wards') or {}).get('name') or 'Unknown ward'
            resource_text = (f"Start with {ward_name}: {plan.get('required_trees')} trees are projected to cut "
                             f"local temperature by {plan.get('estimated_heat_reduction')}°C.")
        else:
            resource_text = "No plantation plans generated yet."

        tree_loss = sum(1 for alert in recent_alerts if alert.get('alert_type') == 'tree_loss')
        if tree_loss:
            pattern_text = f"Illegal tree felling pattern detected: {tree_loss} incidents in recent days."
        else:
            pattern_text = "No tree felling incidents among recent alerts."

        return [
            {'id': 'INS-001', 'category': 'Heat Analysis', 'insight': heat_text,
             'confidence': 94, 'priority': 'high', 'actionRequired': bool(critical)},
            {'id': 'INS-002', 'category': 'Trend Prediction', 'insight': trend_text,
             'confidence': 87, 'priority': 'high', 'actionRequired': rising},
            {'id': 'INS-003', 'category': 'Resource Optimization', 'insight': resource_text,
             'confidence': 91, 'priority': 'medium', 'actionRequired': False},
            {'id': 'INS-004', 'category': 'Pattern Detection', 'insight': pattern_text,
             'confidence': 89, 'priority': 'high', 'actionRequired': tree_loss > 0},
        ]

    # ---------- seeding ----------

    def seed_database(self, today: Optional[date] = None) -> Dict:
        """Reset the store and load the Delhi ward registry with 12 months of history"""
        logger.info("Starting database seeding...")
        self.store.reset()

        wards = self.store.insert_wards(canopy_seed.ward_records())
        registry = {ward['name']: ward for ward in canopy_seed.DELHI_WARDS}
        dates = canopy_seed.monthly_dates(today or date.today())
        logger.info(f"Inserted {len(wards)} wards")

        ndvi_count = 0
        heat_count = 0
        for ward in wards:
            ndvi_records, heat_records, risk_record = canopy_seed.ward_history(
                registry[ward['name']], ward['id'], dates, self.rng, self.policy
            )
            self.store.bulk_insert('ndvi_scores', ndvi_records)
            self.store.bulk_insert('heat_indices', heat_records)
            self.store.save_risk_assessment(risk_record)
            ndvi_count += len(ndvi_records)
            heat_count += len(heat_records)

        logger.info("Inserting detection alerts...")
        alerts = canopy_seed.seed_alerts(wards, datetime.now(timezone.utc), self.rng)
        self.store.bulk_insert('alerts', alerts)

        logger.info("Database seeding completed successfully!")
        return {
            'wards': len(wards),
            'ndviRecords': ndvi_count,
            'heatRecords': heat_count,
            'riskAssessments': len(wards),
            'alerts': len(alerts),
        }

    def seed_status(self) -> Dict:
        counts = {
            'wards': self.store.count('wards'),
            'ndviRecords': self.store.count('ndvi_scores'),
            'heatRecords': self.store.count('heat_indices'),
            'alerts': self.store.count('alerts'),
        }
        return {'seeded': counts['wards'] > 0, 'counts': counts}

    # ---------- AI analysis ----------

    def ai_analysis(self, ward_id: str, analysis_type: Optional[str] = None) -> Dict:
        if self.analyst is None:
            raise AnalystUnavailableError("AI service not configured")

        ward = self._require_ward(ward_id)
        prompt = build_analysis_prompt(
            ward,
            self.store.get_latest_ndvi(ward_id),
            self.store.get_latest_heat(ward_id),
            self.store.get_latest_plan(ward_id),
            analysis_type,
        )
        analysis = self.analyst.analyze(prompt)

        return {
            'ward': ward['name'],
            'analysis': analysis,
            'metadata': {
                'model': self.analyst.model_name,
                'analysisType': analysis_type,
                'timestamp': _now_iso(),
            },
        }

    def chat(self, messages: List[Dict], chat_type: str = 'chat') -> Dict:
        """
        Answer a conversation with the Canopy AI assistant

        Args:
            messages: Turns as {'role': 'user' or 'assistant', 'content': text}
            chat_type: 'chat', 'analysis' or 'summary'

        Returns:
            Dictionary with the reply and model metadata
        """
        if chat_type not in CHAT_INSTRUCTIONS:
            raise CanopyValidationError('type', f"unknown chat type {chat_type!r}")
        if not isinstance(messages, list) or not messages:
            raise CanopyValidationError('messages', "must be a non-empty list")
        for message in messages:
            if (not isinstance(message, dict) or message.get('role') not in ('user', 'assistant')
                    or not isinstance(message.get('content'), str)):
                raise CanopyValidationError('messages', "each message needs a user or assistant role and text content")
        if self.analyst is None:
            raise AnalystUnavailableError("AI service not configured")

        logger.info(f"Processing {chat_type} request with {len(messages)} messages")
        prompt = build_chat_prompt(self.get_kpis(), self.rank_wards()[:4], chat_type)
        reply = self.analyst.chat(messages, prompt)

        return {
            'reply': reply,
            'type': chat_type,
            'metadata': {
                'model': self.analyst.model_name,
                'timestamp': _now_iso(),
            },
        }


def build_system_from_env() -> CanopyIntelligenceSystem:
    """
    Assemble the system from environment variables

    SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY select Supabase storage, otherwise
    an in-memory store is used. CANOPY_POLICY_FILE loads policy overrides,
    CANOPY_RANDOM_SEED pins the random source, GEMINI_API_KEY enables AI analysis.
    """
    supabase_url = os.getenv('SUPABASE_URL')
    supabase_key = os.getenv('SUPABASE_SERVICE_ROLE_KEY')
    policy_file = os.getenv('CANOPY_POLICY_FILE')
    seed = os.getenv('CANOPY_RANDOM_SEED')

    policy = PolicyConfig.from_json(policy_file) if policy_file else DEFAULT_POLICY
    rng = np.random.default_rng(int(seed) if seed else None)

    if supabase_url and supabase_key:
        store = SupabaseService.from_credentials(supabase_url, supabase_key)
    else:
        logger.warning("Supabase credentials not set, using in-memory store")
        store = InMemoryWardStore()

    analyst = None
    try:
        analyst = PlanningAnalystService(os.getenv('GEMINI_API_KEY'))
    except (ValueError, ImportError) as e:
        logger.warning(f"Gemini API not available: {e}")

    return CanopyIntelligenceSystem(store, policy=policy, rng=rng, analyst=analyst)
