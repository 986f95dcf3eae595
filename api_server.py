"""
Flask API server for the canopy monitoring backend
"""

import inspect
import logging
import os
import re
from datetime import datetime, timezone
from functools import wraps

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS

from canopy_intelligence import (
    CanopyValidationError,
    compute_heat_stress,
    compute_risk_assessment,
    compute_vegetation_health,
    correlation_agent_analyze,
    detect_vegetation_change,
    ranking_risk_score,
    strategy_agent_plan,
    vision_agent_analyze,
)
from canopy_services import (
    AnalystUnavailableError,
    CanopyIntelligenceSystem,
    WardNotFoundError,
    build_system_from_env,
)

logger = logging.getLogger(__name__)


class UnknownEngineError(LookupError):
    def __init__(self, engine: str):
        self.engine = engine
        super().__init__(f"Unknown engine: {engine}")


def _snake_case(name: str) -> str:
    """currentNDVI -> current_ndvi, ruralReferenceTemp -> rural_reference_temp"""
    return re.sub(r'(?<=[a-z0-9])(?=[A-Z])', '_', name).lower()


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CanopyValidationError('body', "request body must be a JSON object")
    return data


def _require(data: dict, key: str):
    if data.get(key) in (None, ''):
        raise CanopyValidationError(key, "parameter is required")
    return data[key]


def _int_arg(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise CanopyValidationError(name, f"must be an integer, got {value!r}")


def json_endpoint(view):
    """Serialise the view result and map domain errors onto HTTP status codes"""
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return jsonify(view(*args, **kwargs)), 200
        except (WardNotFoundError, UnknownEngineError) as e:
            return jsonify({'error': str(e)}), 404
        except CanopyValidationError as e:
            return jsonify({'error': str(e), 'field': e.field}), 400
        except ValueError as e:
            return jsonify({'error': str(e)}), 400
        except AnalystUnavailableError as e:
            return jsonify({'error': str(e)}), 503
        except RuntimeError as e:
            logger.error(f"Request failed: {e}")
            return jsonify({'error': str(e)}), 500
        except Exception as e:
            logger.exception("Unexpected error")
            return jsonify({'error': f'Unexpected error: {str(e)}'}), 500
    return wrapper


# Stateless engine entry points exposed under /compute/<engine>
COMPUTE_ENGINES = {
    'vegetation': compute_vegetation_health,
    'heat': compute_heat_stress,
    'change': detect_vegetation_change,
    'risk': compute_risk_assessment,
    'ranking': ranking_risk_score,
    'vision': vision_agent_analyze,
    'correlation': correlation_agent_analyze,
    'strategy': strategy_agent_plan,
}

# Arguments callers may not set through the stateless routes
RESERVED_ARGUMENTS = ('policy', 'rng')


def create_app(system: CanopyIntelligenceSystem = None) -> Flask:
    """
    Build the Flask application

    Args:
        system: Configured system; built from environment variables when omitted

    Returns:
        Flask app
    """
    if system is None:
        system = build_system_from_env()

    app = Flask(__name__)
    CORS(app)  # Enable CORS for the dashboard frontend
    app.config['CANOPY_SYSTEM'] = system

    @app.route('/ndvi', methods=['POST'])
    @json_endpoint
    def ndvi():
        """
        Compute vegetation health for a ward

        Accepts:
        - wardId, redBand, nirBand
        - blueBand: Optional blue reflectance
        - observationDate: Optional ISO date, defaults to today
        """
        data = _json_body()
        response = system.analyze_ndvi(
            ward_id=_require(data, 'wardId'),
            red_band=_require(data, 'redBand'),
            nir_band=_require(data, 'nirBand'),
            blue_band=data.get('blueBand'),
            observation_date=data.get('observationDate'),
        )
        return {'success': True, **response}

    @app.route('/heat-stress', methods=['POST'])
    @json_endpoint
    def heat_stress():
        """Compute heat stress for a ward from LST, ambient temperature, humidity and urban density"""
        data = _json_body()
        response = system.analyze_heat_stress(
            ward_id=_require(data, 'wardId'),
            land_surface_temp=_require(data, 'landSurfaceTemp'),
            ambient_temp=_require(data, 'ambientTemp'),
            humidity=_require(data, 'humidity'),
            urban_density=_require(data, 'urbanDensity'),
            observation_date=data.get('observationDate'),
        )
        return {'success': True, **response}

    @app.route('/risk-assessment', methods=['POST'])
    @json_endpoint
    def risk_assessment():
        data = _json_body()
        response = system.assess_risk(
            ward_id=_require(data, 'wardId'),
            population_density=data.get('populationDensity'),
            tree_loss_rate=data.get('treeLossRate'),
            air_quality_index=data.get('airQualityIndex'),
            vulnerability_score=data.get('vulnerabilityScore'),
            assessment_date=data.get('assessmentDate'),
        )
        return {'success': True, **response}

    @app.route('/batch-analysis', methods=['POST'])
    @json_endpoint
    def batch_analysis():
        results = system.batch_analysis()
        return {'success': True, 'processed': len(results), 'results': results}

    @app.route('/generate-plan', methods=['POST'])
    @json_endpoint
    def generate_plan():
        """Run the vision, correlation and strategy stages for one ward"""
        data = _json_body()
        response = system.generate_plan(
            ward_id=_require(data, 'wardId'),
            land_type=data.get('landType'),
            urban_density=data.get('urbanDensity'),
        )
        return {'success': True, **response}

    @app.route('/generate-all', methods=['POST'])
    @json_endpoint
    def generate_all():
        results = system.generate_all_plans()
        return {'success': True, 'generated': len(results), 'plans': results}

    @app.route('/plans', methods=['GET'])
    @json_endpoint
    def plans():
        formatted = system.list_plans(
            limit=_int_arg('limit', 20),
            priority=request.args.get('priority'),
        )
        return {'success': True, 'count': len(formatted), 'plans': formatted}

    @app.route('/ai-analysis', methods=['POST'])
    @json_endpoint
    def ai_analysis():
        data = _json_body()
        response = system.ai_analysis(
            ward_id=_require(data, 'wardId'),
            analysis_type=data.get('analysisType'),
        )
        return {'success': True, **response}

    @app.route('/seed', methods=['POST'])
    @json_endpoint
    def seed():
        """
        Seed or inspect the store

        Accepts:
        - action: "seed" (default) or "status"
        """
        action = _json_body().get('action', 'seed')
        if action == 'status':
            return system.seed_status()
        if action != 'seed':
            raise CanopyValidationError('action', f"unknown action {action!r}")
        return {
            'success': True,
            'message': 'Database seeded with Delhi ward data',
            'summary': system.seed_database(),
        }

    @app.route('/stats', methods=['GET'])
    @json_endpoint
    def stats():
        return {'success': True, 'stats': system.get_stats()}

    @app.route('/wards', methods=['GET'])
    @json_endpoint
    def wards():
        return {'wards': system.list_wards()}

    @app.route('/wards/ranking', methods=['GET'])
    @json_endpoint
    def ward_ranking():
        return {'wards': system.rank_wards()}

    @app.route('/wards/<ward_id>', methods=['GET'])
    @json_endpoint
    def ward_detail(ward_id):
        return system.get_ward_detail(ward_id)

    @app.route('/alerts', methods=['GET'])
    @json_endpoint
    def alerts():
        return {'alerts': system.list_alerts(
            limit=_int_arg('limit', 20),
            severity=request.args.get('severity'),
        )}

    @app.route('/kpis', methods=['GET'])
    @json_endpoint
    def kpis():
        return {'kpis': system.get_kpis()}

    @app.route('/climate-trends', methods=['GET'])
    @json_endpoint
    def climate_trends():
        return {'trends': system.climate_trends(months=_int_arg('months', 12))}

    @app.route('/geojson', methods=['GET'])
    @json_endpoint
    def geojson():
        """Ward boundaries with metrics; layer is all, green, heat or risk"""
        return system.geojson(layer=request.args.get('layer', 'all'))

    @app.route('/insights', methods=['GET'])
    @json_endpoint
    def insights():
        return {'insights': system.get_insights()}

    @app.route('/ai-chat', methods=['POST'])
    @json_endpoint
    def ai_chat():
        """
        Chat with the Canopy AI assistant

        Accepts:
        - messages: List of {role, content} turns
        - type: "chat" (default), "analysis" or "summary"
        """
        data = _json_body()
        response = system.chat(_require(data, 'messages'), chat_type=data.get('type', 'chat'))
        return {'success': True, **response}

    @app.route('/compute/<engine>', methods=['POST'])
    @json_endpoint
    def compute(engine):
        """
        Run one scoring engine without touching storage

        Body fields are camelCase versions of the engine arguments.
        """
        function = COMPUTE_ENGINES.get(engine)
        if function is None:
            raise UnknownEngineError(engine)
        kwargs = {_snake_case(key): value for key, value in _json_body().items()}
        for reserved in RESERVED_ARGUMENTS:
            kwargs.pop(reserved, None)
        kwargs['policy'] = system.policy
        if engine == 'correlation':
            kwargs['rng'] = system.rng
        elif engine in ('change', 'ranking'):
            kwargs.pop('policy')
        try:
            inspect.signature(function).bind(**kwargs)
        except TypeError as e:
            raise CanopyValidationError('body', str(e))
        return function(**kwargs).to_dict()

    @app.route('/health', methods=['GET'])
    def health():
        """Health check endpoint"""
        return jsonify({
            'status': 'healthy',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), 200

    return app


if __name__ == '__main__':
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    app = create_app()
    app.run(host='0.0.0.0', port=int(os.getenv('PORT', 5000)), debug=True)
