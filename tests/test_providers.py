"""
参考提供方的纯解析部分：PubMed XML/摘要、MeSH SPARQL 结果、规则抽取、LLM JSON。
不访问网络。
"""

import asyncio

import pytest

from litgraph.errors import UpstreamError
from litgraph.providers.llm_extractor import LLMExtractionProvider, parse_extraction_payload
from litgraph.providers.mesh import category_for_tree_numbers, parse_sparql_bindings
from litgraph.providers.pubmed import _year_term, parse_abstracts, summary_to_article
from litgraph.providers.rule_extractor import Ontology, RuleExtractionProvider

EFETCH_XML = """<?xml version="1.0"?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation>
      <PMID>1001</PMID>
      <Article>
        <Abstract>
          <AbstractText Label="BACKGROUND">MDM2 binds <i>p53</i>.</AbstractText>
          <AbstractText Label="RESULTS">MDM2 inhibits p53.</AbstractText>
        </Abstract>
      </Article>
    </MedlineCitation>
  </PubmedArticle>
  <PubmedArticle>
    <MedlineCitation>
      <PMID>1002</PMID>
      <Article><Abstract><AbstractText>Plain abstract.</AbstractText></Abstract></Article>
    </MedlineCitation>
  </PubmedArticle>
  <PubmedArticle>
    <MedlineCitation><PMID>1003</PMID><Article/></MedlineCitation>
  </PubmedArticle>
</PubmedArticleSet>
"""


class TestPubMed:
    def test_structured_abstracts_keep_labels(self):
        abstracts = parse_abstracts(EFETCH_XML)
        assert abstracts == {
            "1001": "BACKGROUND: MDM2 binds p53. RESULTS: MDM2 inhibits p53.",
            "1002": "Plain abstract.",
        }

    def test_broken_xml_gives_nothing(self):
        assert parse_abstracts("<PubmedArticleSet><oops") == {}

    def test_summary_to_article(self):
        doc = {
            "title": "MDM2 inhibits p53.",
            "authors": [{"name": "Vogelstein B"}, {"name": ""}],
            "pubdate": "2020 Mar 5",
            "articleids": [{"idtype": "pubmed", "value": "1001"}, {"idtype": "doi", "value": " 10.1/abc "}],
            "pmcrefcount": "12",
        }
        a = summary_to_article("1001", doc, "abstract text", rank=2)
        assert a.title == "MDM2 inhibits p53"
        assert a.authors == ["Vogelstein B"]
        assert a.year == 2020
        assert a.doi == "10.1/abc"
        assert a.source == "pubmed"
        assert a.source_id == "1001"
        assert a.url == "https://pubmed.ncbi.nlm.nih.gov/1001/"
        assert a.citation_count == 12
        assert a.relevance_score == round(1 / 1.1, 4)
        assert a.dedup_key() == "doi:10.1/abc"

    def test_summary_without_title_or_date(self):
        a = summary_to_article("42", {})
        assert a.title == "PubMed:42"
        assert a.year is None
        assert a.citation_count == 0

    def test_year_term(self):
        assert _year_term(None, None) == ""
        assert _year_term(2015, None) == ' AND ("2015"[Date - Publication] : "3000"[Date - Publication])'
        assert '"2010"' in _year_term(2020, 2010).split(":")[0]


class TestMesh:
    @pytest.mark.parametrize("trees,expected", [
        (["http://id.nlm.nih.gov/mesh/D12.776.624.664.700.800"], "protein"),
        (["G05.360.340"], "gene"),
        (["C04.557.470", "C04.588"], "disease"),
        (["D03.633"], "drug"),
        (["Q99"], "unknown"),
        ([], None),
    ])
    def test_category_for_tree_numbers(self, trees, expected):
        assert category_for_tree_numbers(trees) == expected

    def test_exact_label_wins_with_full_confidence(self):
        data = {"results": {"bindings": [
            {"d": {"value": "http://id.nlm.nih.gov/mesh/D000001"}, "name": {"value": "Apoptosis Regulatory Proteins"}},
            {"d": {"value": "http://id.nlm.nih.gov/mesh/D017209"}, "name": {"value": "Apoptosis"},
             "treeNumber": {"value": "http://id.nlm.nih.gov/mesh/G04.146.954"}},
        ]}}
        term = parse_sparql_bindings("apoptosis", data)
        assert term.normalized == "Apoptosis"
        assert term.id == "D017209"
        assert term.confidence == 1.0
        assert term.category == "biological"

    def test_partial_match_takes_first_binding(self):
        data = {"results": {"bindings": [
            {"d": {"value": "http://id.nlm.nih.gov/mesh/D016159"}, "name": {"value": "Tumor Suppressor Protein p53"},
             "treeNumber": {"value": "http://id.nlm.nih.gov/mesh/D12.776.624.664.700.800"}},
        ]}}
        term = parse_sparql_bindings("p53", data)
        assert term.normalized == "Tumor Suppressor Protein p53"
        assert term.confidence == 0.8
        assert term.category == "protein"

    def test_no_bindings_is_verbatim(self):
        term = parse_sparql_bindings(" xyz ", {"results": {"bindings": []}})
        assert term.normalized == "xyz"
        assert term.confidence == 0.0
        assert term.id is None


class TestRuleExtractor:
    TEXT = "MDM2 inhibits p53 and nutlin-3a blocks MDM2 binding. Loss of p53 causes cancer."

    def test_entities_from_default_ontology(self):
        provider = RuleExtractionProvider()
        entities = asyncio.run(provider.extract_entities(self.TEXT))
        assert [(e.name, e.type) for e in entities] == [
            ("MDM2", "protein"),
            ("p53", "protein"),
            ("nutlin-3a", "drug"),
            ("cancer", "disease"),
        ]

    def test_relations_need_a_cue_between_adjacent_mentions(self):
        provider = RuleExtractionProvider()
        relations = asyncio.run(provider.extract_relations(self.TEXT))
        assert [(r.source, r.target, r.relation_type) for r in relations] == [
            ("MDM2", "p53", "inhibition"),
            ("nutlin-3a", "MDM2", "inhibition"),
        ]

    def test_empty_ontology_extracts_nothing(self):
        provider = RuleExtractionProvider(Ontology())
        assert asyncio.run(provider.extract_entities(self.TEXT)) == []
        assert asyncio.run(provider.extract_relations(self.TEXT)) == []


class TestLLMExtractor:
    def test_fenced_payload_is_parsed(self):
        content = """```json
{"entities": [{"name": "MDM2", "type": "Protein", "confidence": 0.95}, {"name": " "}, {"name": "tumour", "type": "odd"}],
 "relations": [{"source": "MDM2", "target": "p53", "type": "Inhibition"}, {"source": "", "target": "p53"}]}
```"""
        entities, relations = parse_extraction_payload(content)
        assert [(e.name, e.type, e.confidence) for e in entities] == [
            ("MDM2", "protein", 0.95),
            ("tumour", "concept", 0.8),
        ]
        assert [(r.source, r.target, r.relation_type, r.confidence) for r in relations] == [
            ("MDM2", "p53", "inhibition", 0.7),
        ]

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", ""])
    def test_bad_payload_raises_upstream_error(self, content):
        with pytest.raises(UpstreamError):
            parse_extraction_payload(content)

    def test_one_request_serves_entities_and_relations(self):
        provider = LLMExtractionProvider(api_key="test-key", ontology=Ontology())
        calls = []

        def fake_request(text):
            calls.append(text)
            return {"choices": [{"message": {"content": '{"entities": [{"name": "p53", "type": "protein"}], '
                                                        '"relations": []}'}}]}

        provider._request = fake_request

        async def main():
            entities = await provider.extract_entities("p53 text")
            relations = await provider.extract_relations("p53 text")
            await provider.close()
            return entities, relations

        entities, relations = asyncio.run(main())
        assert [e.name for e in entities] == ["p53"]
        assert relations == []
        assert calls == ["p53 text"]

    def test_unexpected_response_shape(self):
        provider = LLMExtractionProvider(api_key="test-key", ontology=Ontology())
        provider._request = lambda text: {"error": "quota"}
        with pytest.raises(UpstreamError):
            asyncio.run(provider.extract_entities("p53"))
